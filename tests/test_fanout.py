"""Page and child-id fan-out."""

import json

import pytest

from conftest import make_metadata
from scripts.extraction.fanout import FanOut, chunked, follow_up_pages
from scripts.extraction.handlers.members import MEMBER_PAGE
from scripts.extraction.messages import MessageKind, MessageType, MergeRequestBatchContent, PageContent
from scripts.extraction.models import Pagination


def _page_content(pagination: Pagination) -> PageContent:
    return PageContent(repository_id=1, namespace_id=1, pagination=pagination)


@pytest.mark.parametrize("total", [0, 1, 2, 3, 12])
def test_follow_up_pages(total):
    pages = follow_up_pages(Pagination(page=1, per_page=10, total_pages=total))
    assert pages == list(range(2, total + 1))
    assert len(pages) == max(total - 1, 0)


@pytest.mark.parametrize("total", [0, 1, 2, 5, 23])
def test_seed_enqueues_pages_two_through_n(total, queue, sender):
    first = Pagination(page=1, per_page=10, total_pages=total)
    FanOut(sender).pages(MEMBER_PAGE, first, _page_content, make_metadata())

    pages = [json.loads(b)["content"]["pagination"] for b in queue.bodies]
    assert [p["page"] for p in pages] == list(range(2, total + 1))
    assert all(p["total_pages"] == total and p["per_page"] == 10 for p in pages)


def test_all_pages_go_out_in_one_dispatch(queue, sender):
    outcomes = FanOut(sender).pages(
        MEMBER_PAGE, Pagination(page=1, per_page=10, total_pages=13), _page_content, make_metadata()
    )
    assert [o.size for o in outcomes] == [10, 2]


def test_single_page_logs_and_sends_nothing(queue, sender, caplog):
    with caplog.at_level("INFO", logger="extraction.fanout"):
        outcomes = FanOut(sender).pages(
            MEMBER_PAGE, Pagination(page=1, per_page=10, total_pages=1), _page_content,
            make_metadata(),
        )
    assert outcomes == []
    assert queue.batches == []
    assert "No more pages left" in caplog.text


def test_ids_are_chunked(queue, sender):
    diffs = MessageType(MessageKind.MERGE_REQUEST_DIFF, MergeRequestBatchContent)
    FanOut(sender).ids(
        diffs,
        list(range(1, 13)),
        5,
        lambda chunk: MergeRequestBatchContent(
            repository_id=1, namespace_id=1, merge_request_ids=chunk
        ),
        make_metadata(),
    )
    ids = [json.loads(b)["content"]["merge_request_ids"] for b in queue.bodies]
    assert ids == [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10], [11, 12]]


def test_no_ids_no_messages(queue, sender):
    assert FanOut(sender).ids(MEMBER_PAGE, [], 5, lambda c: c, make_metadata()) == []
    assert queue.batches == []


def test_chunked_rejects_zero():
    with pytest.raises(ValueError):
        chunked([1, 2], 0)
