"""Tests for text normalization and tokenization."""

from __future__ import annotations

import pytest

from notesearch.utils.text import (
    Token,
    Tokenizer,
    TokenizerConfig,
    content_tokenizer,
    fold,
    name_tokenizer,
    remove_diacritics,
    remove_special_chars,
    split_camel_case,
    stem,
)


def _by_term(tokens):
    return {token.term: token for token in tokens}


class TestNormalizers:
    """Tests for the individual normalization helpers."""

    def test_split_camel_case(self) -> None:
        assert split_camel_case("MeetingNotes") == "Meeting Notes"
        assert split_camel_case("XMLParser") == "XML Parser"
        assert split_camel_case("lowercase") == "lowercase"

    def test_remove_diacritics(self) -> None:
        assert remove_diacritics("Café déjà vu") == "Cafe deja vu"

    def test_remove_special_chars_keeps_tags_and_hyphens(self) -> None:
        assert remove_special_chars("hello, world!").split() == ["hello", "world"]
        assert remove_special_chars("#tag well-known").split() == ["#tag", "well-known"]

    def test_remove_special_chars_drops_repeated_marks(self) -> None:
        assert remove_special_chars("a --- b ## c").split() == ["a", "b", "c"]

    def test_fold_preserves_length(self) -> None:
        text = "Éclair CAFÉ"
        folded = fold(text)
        assert folded == "eclair cafe"
        assert len(folded) == len(text)

    def test_stem(self) -> None:
        assert stem("running") == "run"
        assert stem("walked") == stem("walking") == "walk"


class TestTokenizerConfig:
    """Tests for TokenizerConfig validation."""

    def test_unknown_normalizer(self) -> None:
        with pytest.raises(ValueError, match="Unknown normalizer"):
            TokenizerConfig(normalizers=("shout",))

    def test_unknown_analyzer(self) -> None:
        with pytest.raises(ValueError, match="Unknown analyzer"):
            TokenizerConfig(analyzers=("magic",))


class TestTokenizer:
    """Tests for Tokenizer."""

    def test_stopwords_removed_before_positions(self) -> None:
        tokens = _by_term(content_tokenizer().tokenize("The quick fox"))
        assert "the" not in tokens
        assert tokens["quick"].positions == [0]
        assert tokens["fox"].positions == [1]

    def test_counts_and_positions(self) -> None:
        tokens = _by_term(Tokenizer().tokenize("cat dog cat"))
        assert tokens["cat"].count == 2
        assert tokens["cat"].positions == [0, 2]
        assert tokens["dog"].positions == [1]

    def test_keeps_stopwords_when_configured(self) -> None:
        assert name_tokenizer().unique_terms("The Art of War") == ["the", "art", "of", "war"]

    def test_stemmer_adds_derived_tokens(self) -> None:
        tokens = _by_term(content_tokenizer().tokenize("walking"))
        assert tokens["walking"].is_original
        assert not tokens["walk"].is_original
        assert tokens["walk"].positions == tokens["walking"].positions

    def test_stem_merges_with_existing_term(self) -> None:
        tokens = _by_term(content_tokenizer().tokenize("cat cats"))
        assert tokens["cat"].count == 2
        assert tokens["cat"].positions == [0, 1]
        assert tokens["cat"].is_original

    def test_camel_case_file_names(self) -> None:
        assert name_tokenizer().unique_terms("MeetingNotes") == ["meeting", "notes"]

    def test_word_delimiter_keeps_original(self) -> None:
        terms = set(name_tokenizer().unique_terms("well-known snake_case"))
        assert {"well-known", "well", "known", "snake_case", "snake", "case"} <= terms

    def test_tag_prefix_removed(self) -> None:
        assert "project" in content_tokenizer().unique_terms("#project")

    def test_html_comments_removed(self) -> None:
        assert name_tokenizer().unique_terms("<!-- hidden --> visible") == ["visible"]

    def test_diacritics_folded(self) -> None:
        assert name_tokenizer().unique_terms("Café") == ["cafe"]

    def test_terms_in_order(self) -> None:
        assert content_tokenizer().terms_in_order("The Black Cat") == ["black", "cat"]

    def test_with_config_returns_new_tokenizer(self) -> None:
        base = content_tokenizer()
        plain = base.with_config(analyzers=())
        assert plain.config.analyzers == ()
        assert base.config.analyzers == ("word_delimiter", "stemmer")


class TestToken:
    """Tests for Token.merge."""

    def test_merge(self) -> None:
        token = Token("cat", 1, [3])
        token.merge(2, [1, 3])
        assert token.count == 3
        assert token.positions == [1, 3]
