"""
Tests for chapter selection validation.

Fixture sizes: every chapter holds three 40-character segments, so the
estimated token counts are 1 chapter -> 31, 2 -> 62, 3 -> 92, 4 -> 123.
"""

from unittest.mock import AsyncMock

import pytest

from chapterchat.tokens import estimate_tokens
from chapterchat.validator import (
    ValidationResult,
    estimate_max_selectable_chapters,
    validate_selection,
)


@pytest.mark.asyncio
async def test_selection_that_fits_is_returned_unchanged(segments, chapters):
    result = await validate_selection([0, 1, 2, 3], segments, chapters, threshold=1000)

    assert result.valid_indices == [0, 1, 2, 3]
    assert result.removed_indices == []
    assert result.token_count == 123
    assert result.was_truncated is False
    assert result.verified is False


@pytest.mark.asyncio
async def test_overflow_evicts_from_the_end(segments, chapters):
    result = await validate_selection([3, 0, 1, 2], segments, chapters, threshold=70)

    assert result.valid_indices == [0, 1]
    assert result.removed_indices == [2, 3]
    assert result.token_count == 62
    assert result.was_truncated is True


@pytest.mark.asyncio
async def test_eviction_drops_highest_surviving_index(segments, chapters):
    result = await validate_selection([0, 2, 3], segments, chapters, threshold=40)

    assert result.valid_indices == [0]
    assert result.removed_indices == [2, 3]
    assert set(result.valid_indices) | set(result.removed_indices) == {0, 2, 3}


@pytest.mark.asyncio
async def test_nothing_fits(segments, chapters):
    result = await validate_selection([1, 0, 2, 3], segments, chapters, threshold=10)

    assert result.valid_indices == []
    assert result.removed_indices == [0, 1, 2, 3]
    assert result.token_count == 0
    assert result.was_truncated is True
    assert result.exhausted is True


@pytest.mark.asyncio
@pytest.mark.parametrize("threshold", [0, 10, 10_000])
async def test_empty_request_short_circuits(segments, chapters, threshold):
    measure = AsyncMock(return_value=1)

    result = await validate_selection([], segments, chapters, threshold, measure)

    assert result == ValidationResult()
    assert result.exhausted is False
    measure.assert_not_awaited()


@pytest.mark.asyncio
async def test_precise_measurement_confirms_estimate(segments, chapters):
    measure = AsyncMock(return_value=50)

    result = await validate_selection([0, 1, 2, 3], segments, chapters, 100, measure)

    assert result.valid_indices == [0, 1, 2]
    assert result.removed_indices == [3]
    assert result.token_count == 50
    assert result.verified is True
    # Only the candidate that passed the estimate is measured
    measure.assert_awaited_once()


@pytest.mark.asyncio
async def test_precise_measurement_over_threshold_keeps_evicting(segments, chapters):
    measure = AsyncMock(side_effect=lambda text: estimate_tokens(text) * 2)

    result = await validate_selection([0, 1, 2, 3], segments, chapters, 100, measure)

    assert result.valid_indices == [0]
    assert result.removed_indices == [1, 2, 3]
    assert result.token_count == 62
    assert measure.await_count == 3


@pytest.mark.asyncio
async def test_measurement_failure_accepts_estimate(segments, chapters):
    measure = AsyncMock(side_effect=RuntimeError("measurement unavailable"))

    result = await validate_selection([0, 1, 2, 3], segments, chapters, 1000, measure)

    assert result.valid_indices == [0, 1, 2, 3]
    assert result.token_count == 123
    assert result.verified is False
    measure.assert_awaited_once()


@pytest.mark.asyncio
async def test_requested_indices_are_normalized(segments, chapters):
    result = await validate_selection([1, 1, 9, -1], segments, chapters, threshold=1000)

    assert result.valid_indices == [1]
    assert result.removed_indices == []


@pytest.mark.asyncio
async def test_only_out_of_range_indices_is_an_empty_selection(segments, chapters):
    result = await validate_selection([9], segments, chapters, threshold=1000)

    assert result == ValidationResult()
    assert result.was_truncated is False
    assert not result.exhausted


@pytest.mark.asyncio
async def test_no_transcript_removes_everything(chapters):
    result = await validate_selection([0, 1], [], chapters, threshold=100)

    assert result.valid_indices == []
    assert result.removed_indices == [0, 1]
    assert result.was_truncated is True


@pytest.mark.asyncio
async def test_no_chapters_checks_whole_transcript(segments):
    over = await validate_selection([0], segments, [], threshold=100)
    under = await validate_selection([0], segments, [], threshold=1000)

    assert over.token_count == 123
    assert over.was_truncated is True
    assert under.was_truncated is False
    assert under.valid_indices == []


@pytest.mark.asyncio
async def test_estimate_max_selectable_chapters(segments, chapters):
    assert await estimate_max_selectable_chapters(segments, chapters, threshold=100) == 3
    assert await estimate_max_selectable_chapters(segments, chapters) == 4
    assert await estimate_max_selectable_chapters(segments, [], threshold=100) == 0
