import pytest

from postchat.utils import chunk_text, split_paragraphs, split_sentences


class TestSplitting:
    def test_split_paragraphs_collapses_whitespace(self):
        text = "first   line\ncontinues\n\n\n  second para  \n \nthird"
        assert split_paragraphs(text) == ["first line continues", "second para", "third"]

    def test_split_paragraphs_empty(self):
        assert split_paragraphs("") == []
        assert split_paragraphs("  \n\n  ") == []

    def test_split_sentences(self):
        assert split_sentences("One. Two! Three? Four") == ["One.", "Two!", "Three?", "Four"]


class TestChunkText:
    def test_empty_text_has_no_chunks(self):
        assert chunk_text("", 100) == []
        assert chunk_text("   \n\n ", 100) == []

    def test_short_paragraphs_packed_together(self):
        assert chunk_text("cats are mammals\n\ndogs are loyal", 100) == ["cats are mammals\n\ndogs are loyal"]

    def test_paragraphs_split_when_over_limit(self):
        chunks = chunk_text("cats are mammals\n\ndogs are loyal", 20)
        assert chunks == ["cats are mammals", "dogs are loyal"]

    def test_long_paragraph_split_on_sentences(self):
        para = "Cats purr softly. Dogs bark loudly. Birds sing early."
        chunks = chunk_text(para, 20)
        assert chunks == ["Cats purr softly.", "Dogs bark loudly.", "Birds sing early."]

    def test_sentences_of_one_paragraph_joined_by_space(self):
        para = "Aa. Bb. " + "C" * 20 + "."
        chunks = chunk_text(para, 12)
        assert chunks[0] == "Aa. Bb."

    def test_oversized_word_is_sliced(self):
        chunks = chunk_text("x" * 25, 10)
        assert chunks == ["x" * 10, "x" * 10, "x" * 5]

    def test_every_chunk_within_limit_and_non_empty(self):
        text = "\n\n".join(
            "Sentence number %d has a handful of words. Another follows it closely!" % i for i in range(30)
        )
        chunks = chunk_text(text, 50)
        assert chunks
        assert all(0 < len(c) <= 50 for c in chunks)
        assert all(c.strip() for c in chunks)

    def test_content_preserved_in_order(self):
        text = "alpha beta gamma.\n\ndelta epsilon.\n\nzeta"
        joined = " ".join(chunk_text(text, 18)).split()
        assert joined == text.split()

    def test_non_positive_limit_rejected(self):
        with pytest.raises(ValueError):
            chunk_text("hello", 0)
