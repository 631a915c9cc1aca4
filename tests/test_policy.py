from pagewright.errors import (
    ErrorCategory,
    GenerationFailed,
    InvalidDocumentStructure,
    ParseFailed,
)
from pagewright.policy import FailurePolicy, categorize


def test_every_category_is_reachable():
    assert categorize(ParseFailed(["direct_array"], 12)) is ErrorCategory.PARSING
    assert categorize(InvalidDocumentStructure("no body")) is ErrorCategory.DOCUMENT
    assert categorize(GenerationFailed("all models failed")) is ErrorCategory.GENERATION

    policy = FailurePolicy()
    policy.record_skip("TEXT_3")
    assert policy.records[0].category is ErrorCategory.REPLACEMENT
    assert set(ErrorCategory) == {
        ErrorCategory.GENERATION,
        ErrorCategory.PARSING,
        ErrorCategory.DOCUMENT,
        ErrorCategory.REPLACEMENT,
    }


def test_skips_stay_out_of_chunk_messages():
    policy = FailurePolicy()
    policy.handle_chunk_failure(1, GenerationFailed("bad key"))
    policy.record_skip("TEXT_0")

    assert policy.messages == ["Chunk 1 failed: bad key"]
    assert policy.all_failed(1)
