"""Command line entry point for batch scan grading."""

import asyncio
from pathlib import Path

import click

from .batch import BatchQueue, PageGrouper, SessionStore
from .config import RECONCILIATION_RUNS, SCANS_FOLDER, validate_config
from .database import SqlGradeStore, init_db
from .errors import PersistenceFailure
from .gradebook import GradebookSync
from .grading import (
    ClaudeClient,
    ClaudeHandwritingComparer,
    ConfidenceReconciler,
    GradingRequest,
    RubricStep,
    make_grader,
)
from .identity import StudentCode, StudentPageCode, StudentQuestionCode, StudentIdentifier, make_qr_image
from .ingest import add_pdf_to_queue


@click.group()
def cli():
    """Batch scan grading CLI."""
    pass


@cli.command()
def init():
    """Initialize the database."""
    issues = validate_config(require_api_key=False)
    for issue in issues:
        click.echo(f"  Warning: {issue}", err=True)
    init_db()
    click.echo("Database initialized.")
    click.echo(f"Scans folder: {SCANS_FOLDER}")


@cli.command("add-student")
@click.argument("student_id")
@click.argument("name")
@click.option("--class", "class_id", default=None, help="Class the student belongs to")
def add_student(student_id, name, class_id):
    """Add a student to the roster."""
    init_db()
    SqlGradeStore().add_student(student_id, name, class_id)
    click.echo(f"Added {name} ({student_id})")


@cli.command("make-qr")
@click.argument("student_id")
@click.option("--question", "-q", default=None, help="Question id (question-specific code)")
@click.option("--page", "-p", type=int, default=None, help="Page number (multi-page code)")
@click.option("--total", "-t", type=int, default=None, help="Total pages in the packet")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), required=True)
def make_qr(student_id, question, page, total, output):
    """Render an identity QR code to a PNG file."""
    if page is not None and question is not None:
        raise click.UsageError("Use either --question or --page, not both")
    if page is not None:
        payload = StudentPageCode(student_id, page, total)
    elif question is not None:
        payload = StudentQuestionCode(student_id, question)
    else:
        payload = StudentCode(student_id)
    output.write_bytes(make_qr_image(payload))
    click.echo(f"Wrote {output}")


def _parse_rubric(steps) -> list[RubricStep]:
    rubric = []
    for number, step in enumerate(steps, start=1):
        description, _, points = step.rpartition(":")
        try:
            rubric.append(RubricStep(step_number=number, description=description.strip(), points=float(points)))
        except ValueError:
            raise click.BadParameter(f"Rubric step must look like 'description:points', got {step!r}")
    return rubric


def _load_scans(queue: BatchQueue, paths):
    for path in paths:
        if path.suffix.lower() == ".pdf":
            add_pdf_to_queue(queue, path)
        else:
            queue.add_image(path, filename=path.name)


async def _grade_batch(queue, request, roster, runs, mode):
    from .batch.pipeline import BatchPipeline

    client = ClaudeClient()
    comparer = ClaudeHandwritingComparer(client)
    pipeline = BatchPipeline(
        queue,
        identifier=StudentIdentifier(name_reader=comparer),
        reconciler=ConfidenceReconciler(make_grader(client, mode=mode), runs=runs),
        grouper=PageGrouper(queue, similarity_oracle=comparer),
    )
    return await pipeline.run(request, roster)


@cli.command()
@click.argument("scans", nargs=-1, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--question", "-q", default=None, help="Question id for every page")
@click.option("--rubric", "-r", multiple=True, help="Rubric step as 'description:points' (repeatable)")
@click.option("--runs", type=int, default=None, help="Grading runs per page")
@click.option("--mode", type=click.Choice(["ai", "teacher"]), default="ai")
@click.option("--class", "class_id", default=None, help="Only match students in this class")
@click.option("--resume/--no-resume", default=False, help="Continue the last saved session")
@click.option("--save/--no-save", default=True, help="Write grades to the gradebook")
def grade(scans, question, rubric, runs, mode, class_id, resume, save):
    """Identify, group and grade scanned pages."""
    validate_config()
    init_db()
    store = SqlGradeStore()
    session_store = SessionStore()

    queue = session_store.load() if resume else None
    if queue is None:
        queue = BatchQueue()
    _load_scans(queue, scans)
    if not len(queue):
        click.echo("Nothing to grade.")
        return
    session_store.attach(queue)

    request = GradingRequest(question_id=question, rubric_steps=_parse_rubric(rubric))
    roster = store.read_roster(class_id)
    report = asyncio.run(_grade_batch(queue, request, roster, runs or RECONCILIATION_RUNS, mode))

    click.echo(f"\nGraded {len(report.completed)} page(s), {len(report.failed)} failed.")
    for item in queue.items:
        if item.result is not None and not item.is_continuation:
            who = item.student_name or item.student_id or "UNASSIGNED"
            click.echo(f"  {who}: {item.result.effective_grade():.0f}% ({item.result.confidence_label})")
        elif item.error:
            click.echo(f"  {item.filename or item.id}: {item.error}", err=True)

    summary = queue.generate_summary()
    if summary.total_students:
        click.echo(f"\nAverage {summary.average_score}%, pass rate {summary.pass_rate}%")

    if save:
        sync_report = GradebookSync(store).save_to_gradebook(queue)
        click.echo(f"Saved {sync_report.success_count} grade(s), {sync_report.fail_count} failed.")
        if sync_report.fail_count == 0:
            session_store.clear()


@cli.command()
@click.option("--folder", type=click.Path(file_okay=False, path_type=Path), default=None)
def watch(folder):
    """Collect scans from a folder into the current session until interrupted."""
    from .ingest.watcher import ScanWatcher

    session_store = SessionStore()
    queue = session_store.load() or BatchQueue()
    session_store.attach(queue)

    async def run():
        watcher = ScanWatcher(queue, loop=asyncio.get_running_loop())
        watcher.start(folder)
        try:
            while True:
                await asyncio.sleep(1)
        finally:
            watcher.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
    click.echo(f"\n{len(queue)} page(s) in session. Run 'grade --resume' to grade them.")


@cli.command()
@click.option("--class", "class_id", default=None)
def roster(class_id):
    """List the students on the roster."""
    init_db()
    try:
        entries = SqlGradeStore().read_roster(class_id)
    except PersistenceFailure as e:
        raise click.ClickException(str(e))
    for entry in entries:
        click.echo(f"{entry.id}\t{entry.display_name}")


if __name__ == "__main__":
    cli()
