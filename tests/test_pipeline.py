"""Tests for the batch pipeline: identification, grading, cancellation."""

import asyncio

import pytest

from conftest import FakeGrader, FakeHandwriting, FakeQRReader, rubric_result
from scangrade.batch.grouping import PageGrouper
from scangrade.batch.models import IdentificationSource, ItemStatus, PageType
from scangrade.batch.pipeline import BatchPipeline
from scangrade.errors import OracleFailure
from scangrade.grading.oracle import GradingOracle, GradingRequest
from scangrade.grading.reconciliation import ConfidenceReconciler
from scangrade.identity.identifier import StudentIdentifier
from scangrade.identity.qr_codec import StudentCode, StudentPageCode, StudentQuestionCode, encode


def make_pipeline(queue, grader=None, codes=None, names=None, similarities=None, runs=1):
    handwriting = FakeHandwriting(similarities, names)
    identifier = StudentIdentifier(qr_reader=FakeQRReader(codes), name_reader=handwriting)
    reconciler = ConfidenceReconciler(grader or FakeGrader(), runs=runs)
    return BatchPipeline(queue, identifier, reconciler, grouper=PageGrouper(queue, handwriting))


class TestIdentification:

    def test_qr_then_handwriting_then_unassigned(self, queue, roster):
        by_qr = queue.add_image(b"qr")
        by_name = queue.add_image(b"named")
        unknown = queue.add_image(b"blank")
        pipeline = make_pipeline(
            queue,
            codes={b"qr": encode(StudentQuestionCode("s2", "q9"))},
            names={b"named": "grace hoper"},
        )

        counts = asyncio.run(pipeline.identify_all(roster))

        assert counts == {"ready": 2, "unassigned": 1}
        item = queue.get(by_qr)
        assert (item.status, item.student_id, item.question_id) == (ItemStatus.READY, "s2", "q9")
        assert item.student_name == "Alan Turing"
        assert item.identification.source == IdentificationSource.QR
        assert item.auto_assigned is True

        item = queue.get(by_name)
        assert item.student_id == "s3"
        assert item.identification.source == IdentificationSource.HANDWRITING
        assert item.identification.handwritten_name == "grace hoper"

        assert queue.get(unknown).status == ItemStatus.UNASSIGNED
        assert queue.is_identifying is False

    def test_unrecognized_qr_falls_back_to_handwriting(self, queue, roster):
        item_id = queue.add_image(b"old-code")
        pipeline = make_pipeline(queue, codes={b"old-code": "PA-00042"}, names={b"old-code": "Ada Lovelace"})

        asyncio.run(pipeline.identify_all(roster))

        item = queue.get(item_id)
        assert item.student_id == "s1"
        assert item.identification.qr_code_detected is True
        assert item.identification.source == IdentificationSource.HANDWRITING

    def test_qr_student_not_on_roster_is_not_trusted(self, queue, roster):
        item_id = queue.add_image(b"qr")
        pipeline = make_pipeline(queue, codes={b"qr": encode(StudentCode("transfer-student"))})
        asyncio.run(pipeline.identify_all(roster))
        assert queue.get(item_id).status == ItemStatus.UNASSIGNED

    def test_page_numbers_reach_the_item(self, queue, roster):
        item_id = queue.add_image(b"p2")
        pipeline = make_pipeline(queue, codes={b"p2": encode(StudentPageCode("s1", 2, 3))})
        asyncio.run(pipeline.identify_all(roster))
        item = queue.get(item_id)
        assert item.page_number == 2
        assert item.identification.total_pages == 3

    def test_manually_labelled_items_skip_identification(self, queue, roster):
        item_id = queue.add_image(b"labelled", student_id="s3")
        pipeline = make_pipeline(queue, codes={b"labelled": encode(StudentCode("s1"))})
        asyncio.run(pipeline.identify_all(roster))
        item = queue.get(item_id)
        assert item.status == ItemStatus.READY
        assert item.student_id == "s3"


class TestAnalysis:

    def test_one_failure_does_not_touch_other_items(self, queue):
        ids = [queue.add_image(f"page-{n}".encode(), student_id=f"s{n}") for n in range(1, 6)]
        grader = FakeGrader(default=85, failing={b"page-3"})
        pipeline = make_pipeline(queue, grader=grader)

        report = asyncio.run(pipeline.analyze_all(GradingRequest()))

        assert report.failed == [ids[2]]
        assert report.completed == [ids[0], ids[1], ids[3], ids[4]]
        for n, item_id in enumerate(ids, start=1):
            item = queue.get(item_id)
            if n == 3:
                assert item.status == ItemStatus.FAILED
                assert "unavailable" in item.error
                assert item.result is None
            else:
                assert item.status == ItemStatus.COMPLETED
                assert item.student_id == f"s{n}"
                assert item.result.effective_grade() == 85
                assert item.error is None
        assert queue.current_index == -1
        assert queue.is_processing is False

    def test_items_are_graded_one_at_a_time_in_order(self, queue):
        for n in range(3):
            queue.add_image(f"page-{n}".encode(), student_id="s1", question_id=f"q{n}")
        grader = FakeGrader()
        asyncio.run(make_pipeline(queue, grader=grader).analyze_all(GradingRequest()))
        assert grader.calls == [b"page-0", b"page-1", b"page-2"]

    def test_retry_failed(self, queue):
        item_id = queue.add_image(b"flaky", student_id="s1")
        grader = FakeGrader(failing={b"flaky"})
        pipeline = make_pipeline(queue, grader=grader)
        asyncio.run(pipeline.analyze_all(GradingRequest()))
        assert queue.get(item_id).status == ItemStatus.FAILED

        grader.failing.clear()
        report = asyncio.run(pipeline.retry_failed(GradingRequest()))

        assert report.completed == [item_id]
        assert queue.get(item_id).status == ItemStatus.COMPLETED

    def test_continuations_are_graded_with_their_primary(self, queue):
        primary = queue.add_image(b"p1", student_id="s1")
        page = queue.add_image(b"p2", student_id="s1")
        PageGrouper(queue).group_by_student()
        grader = FakeGrader()

        report = asyncio.run(make_pipeline(queue, grader=grader).analyze_all(GradingRequest()))

        assert report.completed == [primary]
        assert report.skipped == [page]
        assert grader.calls == [[b"p1", b"p2"]]
        assert queue.get(page).page_type == PageType.CONTINUATION
        assert queue.get(page).result is None

    def test_grading_a_continuation_directly_is_an_error(self, queue):
        primary = queue.add_image(b"p1", student_id="s1")
        page = queue.add_image(b"p2")
        PageGrouper(queue).link_continuation(page, primary)
        with pytest.raises(ValueError):
            asyncio.run(make_pipeline(queue).analyze_item(page, GradingRequest()))

    def test_overridden_items_are_not_regraded(self, queue):
        item_id = queue.add_image(b"p1", student_id="s1")
        pipeline = make_pipeline(queue, grader=FakeGrader(default=40))
        asyncio.run(pipeline.analyze_all(GradingRequest()))
        queue.set_override(item_id, 90, "Partial credit for method")
        queue.transition(item_id, ItemStatus.READY)

        report = asyncio.run(pipeline.analyze_all(GradingRequest()))

        assert report.skipped == [item_id]
        assert queue.get(item_id).result.effective_grade() == 90

    def test_item_removed_mid_grading_does_not_stop_the_batch(self, queue):
        ids = [queue.add_image(f"page-{n}".encode(), student_id="s1", question_id=f"q{n}") for n in range(3)]

        class RemovesFirst(FakeGrader):
            async def invoke(self, image, request):
                if image == b"page-0":
                    queue.remove_image(ids[0])
                return await super().invoke(image, request)

        report = asyncio.run(make_pipeline(queue, grader=RemovesFirst()).analyze_all(GradingRequest()))

        assert report.skipped == [ids[0]]
        assert report.completed == ids[1:]
        assert ids[0] not in queue
        assert all(queue.get(i).status == ItemStatus.COMPLETED for i in ids[1:])

    def test_item_removed_while_its_grading_fails(self, queue):
        item_id = queue.add_image(b"gone", student_id="s1")

        class RemovesThenFails(FakeGrader):
            async def invoke(self, image, request):
                queue.remove_image(item_id)
                raise OracleFailure("timed out")

        pipeline = make_pipeline(queue, grader=RemovesThenFails())
        assert asyncio.run(pipeline.analyze_item(item_id, GradingRequest())) is None
        assert len(queue) == 0

    def test_conflicting_pages_wait_for_a_teacher(self, queue, roster):
        first = queue.add_image(b"s1-p1")
        duplicate = queue.add_image(b"s1-p1-again")
        code = encode(StudentPageCode("s1", 1, 2))
        grader = FakeGrader()
        pipeline = make_pipeline(queue, grader=grader, codes={b"s1-p1": code, b"s1-p1-again": code})

        report = asyncio.run(pipeline.run(GradingRequest(), roster))

        assert report.completed == [first]
        assert report.skipped == [duplicate]
        assert grader.calls == [b"s1-p1"]
        assert queue.get(duplicate).status == ItemStatus.UNASSIGNED

    def test_full_run(self, queue, roster):
        queue.add_image(b"a1")
        queue.add_image(b"a2")
        queue.add_image(b"b1")
        pipeline = make_pipeline(
            queue,
            grader=FakeGrader({b"a1": 70, b"b1": 96}),
            codes={
                b"a1": encode(StudentPageCode("s1", 1, 2)),
                b"a2": encode(StudentPageCode("s1", 2, 2)),
                b"b1": encode(StudentCode("s2")),
            },
        )

        report = asyncio.run(pipeline.run(GradingRequest(), roster))

        assert len(report.completed) == 2
        summary = queue.generate_summary()
        assert summary.total_students == 2
        assert summary.average_score == 83


class TestCancellation:

    def test_cancelled_item_returns_to_its_previous_status(self, queue):
        class Slow(GradingOracle):
            started = None

            async def invoke(self, image, request):
                self.started.set()
                await asyncio.sleep(60)
                return rubric_result(100)

        item_id = queue.add_image(b"p1", student_id="s1")
        queue.transition(item_id, ItemStatus.READY)
        grader = Slow()
        pipeline = make_pipeline(queue, grader=grader)

        async def scenario():
            grader.started = asyncio.Event()
            task = asyncio.create_task(pipeline.analyze_item(item_id, GradingRequest()))
            await grader.started.wait()
            assert queue.get(item_id).status == ItemStatus.ANALYZING
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        item = queue.get(item_id)
        assert item.status == ItemStatus.READY
        assert item.result is None
        assert item.error is None
