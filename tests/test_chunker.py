from kb_chat.ingest.chunker import chunk_text, hard_split, split_sentences
from kb_chat.ingest.clean import normalize_text, strip_html


def _text(n=40):
    return " ".join(f"Sentence number {i} talks about topic {i % 7}." for i in range(n))


def test_split_sentences_protects_abbreviations():
    text = "Dr. Smith arrived. He said hi! Was it e.g. fine? Yes."
    assert split_sentences(text) == ["Dr. Smith arrived.", "He said hi!", "Was it e.g. fine?", "Yes."]


def test_chunks_respect_max_chars():
    chunks = chunk_text(_text(), max_chars=300, overlap_sentences=3)
    assert len(chunks) >= 2
    assert all(len(c) <= 300 for c in chunks)


def test_next_chunk_is_seeded_with_overlap():
    chunks = chunk_text(_text(), max_chars=300, overlap_sentences=1)
    last_sentence = split_sentences(chunks[0])[-1]
    assert chunks[1].startswith(last_sentence)


def test_all_sentences_are_kept():
    text = _text()
    chunks = chunk_text(text, max_chars=300, overlap_sentences=2)
    seen = set()
    for c in chunks:
        seen.update(split_sentences(c))
    assert seen == set(split_sentences(text))


def test_oversize_sentence_is_hard_split():
    long_sentence = "x" * 2500 + "."
    chunks = chunk_text(long_sentence, max_chars=1200, overlap_sentences=3)
    assert len(chunks) == 3
    assert all(len(c) <= 1200 for c in chunks)
    # 15% overlap between windows
    assert chunks[0][-180:] == chunks[1][:180]


def test_non_empty_input_gives_a_chunk():
    assert chunk_text("hello") == ["hello"]
    assert chunk_text("") == []


def test_rechunking_joined_sentences_is_stable():
    text = "  First line.\n\nSecond   line here!  " + _text(25)
    chunks = chunk_text(text, max_chars=250, overlap_sentences=2)
    rejoined = " ".join(split_sentences(text))
    assert chunk_text(rejoined, max_chars=250, overlap_sentences=2) == chunks


def test_hard_split_windows():
    assert hard_split("abcdefghij", 4, 1) == ["abcd", "defg", "ghij"]
    assert hard_split("", 4, 1) == []


def test_strip_html():
    html = "<p>Reset&nbsp;your <b>password</b></p><script>alert(1)</script>\n<style>p{}</style>"
    assert strip_html(html) == "Reset your password"


def test_normalize_text_dehyphenates():
    assert normalize_text("configu-\nration   done\r\n\n\n\nnext") == "configuration done\n\nnext"
