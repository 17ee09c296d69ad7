"""Tests for writing graded items to the gradebook."""

from dataclasses import replace

from conftest import MemoryGradeStore, add_completed
from scangrade.batch.grouping import PageGrouper
from scangrade.batch.models import ItemStatus
from scangrade.gradebook.sync import GradebookSync


class TestSaveToGradebook:

    def test_saving_twice_writes_each_grade_once(self, queue):
        add_completed(queue, "s1", 90, question_id="q1")
        add_completed(queue, "s2", 65, question_id="q1")
        store = MemoryGradeStore()
        sync = GradebookSync(store)

        first = sync.save_to_gradebook(queue)
        second = sync.save_to_gradebook(queue)

        assert (first.success_count, first.fail_count) == (2, 0)
        assert (second.success_count, second.skipped_count) == (0, 2)
        assert sorted((r.student_id, r.question_id) for r in store.records) == [("s1", "q1"), ("s2", "q1")]

    def test_continuation_pages_get_no_row(self, queue):
        primary = add_completed(queue, "s1", 80, image=b"p1")
        queue.add_image(b"p2", student_id="s1")
        PageGrouper(queue).group_by_student()
        store = MemoryGradeStore()

        report = GradebookSync(store).save_to_gradebook(queue)

        assert report.success_count == 1
        assert len(store.records) == 1
        assert queue.is_saved(primary)

    def test_only_completed_identified_items_are_eligible(self, queue):
        add_completed(queue, "s1", 80)
        queue.add_image(b"pending", student_id="s2")
        unassigned = queue.add_image(b"nobody")
        queue.transition(unassigned, ItemStatus.ANALYZING)
        queue.transition(unassigned, ItemStatus.COMPLETED, result=queue.get(queue.items[0].id).result)
        store = MemoryGradeStore()

        report = GradebookSync(store).save_to_gradebook(queue)

        assert report.success_count == 1
        assert [r.student_id for r in store.records] == ["s1"]

    def test_failed_write_is_isolated_and_retryable(self, queue):
        add_completed(queue, "s1", 80)
        failing = add_completed(queue, "s2", 70)
        add_completed(queue, "s3", 60)
        store = MemoryGradeStore(failing_students={"s2"})
        sync = GradebookSync(store)

        report = sync.save_to_gradebook(queue)

        assert (report.success_count, report.fail_count) == (2, 1)
        assert report.failures[0][0] == failing
        assert not queue.is_saved(failing)

        store.failing_students.clear()
        retry = sync.save_to_gradebook(queue)
        assert (retry.success_count, retry.skipped_count) == (1, 2)

    def test_unmark_saved_allows_saving_again(self, queue):
        item_id = add_completed(queue, "s1", 80)
        store = MemoryGradeStore()
        sync = GradebookSync(store)
        sync.save_to_gradebook(queue)

        queue.unmark_saved(item_id)
        report = sync.save_to_gradebook(queue)

        assert report.success_count == 1
        assert len(store.records) == 2

    def test_record_prefers_the_override(self, queue):
        item_id = add_completed(queue, "s1", 62)
        queue.set_override(item_id, 75, "Misread step 3")
        store = MemoryGradeStore()

        GradebookSync(store).save_to_gradebook(queue)

        record = store.records[0]
        assert record.grade == 75
        assert record.justification == "Misread step 3"
        assert record.raw_earned == 62
        assert record.raw_possible == 100
        assert record.topic == "Solving linear equations"
        assert record.confidence_label == "high"

    def test_topic_defaults_when_no_problem_identified(self, queue):
        item_id = add_completed(queue, "s1", 62)
        queue.apply_changes(item_id, result=replace(queue.get(item_id).result, problem_identified=None))
        store = MemoryGradeStore()
        GradebookSync(store).save_to_gradebook(queue)
        assert store.records[0].topic == "General Assessment"
