import json
from datetime import datetime, timedelta

import click

from .config import load_config, busy_timeout
from .db import init_db
from .log import setup_logger
from .models import JOB_STATES
from .pipeline import PipelineBackend
from .scheduler import SchedulerBackend
from .utils import parse_delay_to_seconds, parse_iso, utc_now

USER_ERRORS = (ValueError, click.ClickException)


def _fail(e):
    click.secho(f"Error: {e}", fg="red")
    raise SystemExit(1)


def _pipeline(cfg) -> PipelineBackend:
    return PipelineBackend(cfg["db"], cfg["jobs_table"], timeout=busy_timeout(cfg))


def _scheduler(cfg) -> SchedulerBackend:
    return SchedulerBackend(cfg["db"], cfg["schedule_table"], timeout=busy_timeout(cfg))


def _parse_attrs(attrs_json):
    if not attrs_json:
        return {}
    try:
        attrs = json.loads(attrs_json)
    except ValueError as e:
        raise ValueError(f"--attrs is not valid JSON ({e})")
    if not isinstance(attrs, dict):
        raise ValueError("--attrs must be a JSON object")
    return attrs


def _dump(obj):
    click.echo(json.dumps(obj, indent=2, default=str))


AT_HELP = "ISO datetime; without an offset it is local time (default: now)"


def _parse_instant(at) -> datetime:
    # cron fields match local wall time; the claim key is always UTC
    if not at:
        return datetime.now().astimezone()
    return parse_iso(at, assume_local=True)


@click.group(help="cronq — job queue and cron scheduler backed by SQLite")
@click.option("--db", default=None, help="SQLite database file (env CRONQ_DB)")
@click.option("--log-level", default=None, help="Logging level (env CRONQ_LOG_LEVEL)")
@click.option("--log-format", type=click.Choice(["text", "json"]), default=None,
              help="Log output format (env CRONQ_LOG_FORMAT)")
@click.pass_context
def cli(ctx, db, log_level, log_format):
    cfg = load_config()
    if db:
        cfg["db"] = db
    if log_level:
        cfg["log_level"] = log_level
    if log_format:
        cfg["log_format"] = log_format
    setup_logger(cfg["log_format"], cfg["log_level"])
    ctx.obj = cfg


@cli.command("init", help="Create the job and schedule tables")
@click.pass_obj
def init_cmd(cfg):
    init_db(cfg["db"], cfg["jobs_table"], cfg["schedule_table"], timeout=busy_timeout(cfg))
    click.secho(f"Initialised {cfg['db']} ({cfg['jobs_table']}, {cfg['schedule_table']})", fg="green")


# ---------- Jobs ----------
@cli.command("enqueue", help="Add a new job to the queue")
@click.argument("class_name")
@click.option("--type", "job_type", required=True, help="Job type tag used by dequeue filters")
@click.option("--attrs", "attrs_json", default=None, help="Job attributes as a JSON object")
@click.option("--run-at", default=None, help="ISO datetime before which the job is held back (no offset = UTC)")
@click.option("--delay", "delay_str", default=None,
              help="Hold the job back for a delay, e.g. 20s, 5m, 1h30m (mutually exclusive with --run-at)")
@click.pass_obj
def enqueue_cmd(cfg, class_name, job_type, attrs_json, run_at, delay_str):
    try:
        if run_at and delay_str:
            raise click.ClickException("Use either --run-at or --delay, not both.")

        ready_at = None
        if delay_str:
            ready_at = utc_now() + timedelta(seconds=parse_delay_to_seconds(delay_str))
        elif run_at:
            ready_at = parse_iso(run_at)

        attrs = _parse_attrs(attrs_json)
        attrs["class_name"] = class_name
        attrs["type"] = job_type

        backend = _pipeline(cfg)
        try:
            job = backend.enqueue(attrs, ready_at)
        finally:
            backend.close()
        click.secho(
            f"Enqueued {job['id']} -> {class_name} (type={job_type}, "
            f"{'run_at=' + ready_at.isoformat() if ready_at else 'run_at=now'})",
            fg="green",
        )
    except USER_ERRORS as e:
        _fail(e)


@cli.command("show", help="Show one job")
@click.argument("job_id")
@click.pass_obj
def show_cmd(cfg, job_id):
    backend = _pipeline(cfg)
    try:
        job = backend.find(job_id)
    finally:
        backend.close()
    if job is None:
        _fail(f"Job {job_id} not found.")
    _dump(job)


@cli.command("list", help="List jobs, oldest first")
@click.option("--status", type=click.Choice(list(JOB_STATES)), default=None)
@click.pass_obj
def list_cmd(cfg, status):
    backend = _pipeline(cfg)
    try:
        jobs = backend.list_jobs(status=status)
    finally:
        backend.close()

    if not jobs:
        click.echo("No jobs.")
        return

    for j in jobs:
        click.echo(f"{j['id']:>36} | {j['status']:<6} | {j['type']:<12} | {j['class_name']}")


@cli.command("status", help="Job counts per status")
@click.pass_obj
def status_cmd(cfg):
    backend = _pipeline(cfg)
    try:
        _dump(backend.counts())
    finally:
        backend.close()


def _job_transition(cfg, job_id, action, message):
    backend = _pipeline(cfg)
    try:
        job = backend.find(job_id)
        if job is None:
            raise click.ClickException(f"Job {job_id} not found.")
        getattr(backend, action)(job)
        click.secho(message.format(job_id=job_id), fg="green")
    except USER_ERRORS as e:
        _fail(e)
    finally:
        backend.close()


@cli.command("reset", help="Put a failed or locked job back in the queue")
@click.argument("job_id")
@click.pass_obj
def reset_cmd(cfg, job_id):
    _job_transition(cfg, job_id, "reset", "Re-queued job {job_id}.")


@cli.command("fail", help="Mark a job as failed")
@click.argument("job_id")
@click.pass_obj
def fail_cmd(cfg, job_id):
    _job_transition(cfg, job_id, "fail", "Marked job {job_id} as failed.")


@cli.command("complete", help="Mark a job as done and remove it")
@click.argument("job_id")
@click.pass_obj
def complete_cmd(cfg, job_id):
    _job_transition(cfg, job_id, "complete", "Completed job {job_id}.")


@cli.command("clear", help="Delete every job")
@click.confirmation_option(prompt="Delete all jobs?")
@click.pass_obj
def clear_cmd(cfg):
    backend = _pipeline(cfg)
    try:
        backend.clear()
    finally:
        backend.close()
    click.secho("All jobs deleted.", fg="yellow")


# ---------- Schedule ----------
@cli.group("schedule", help="Recurring jobs")
def schedule_group():
    pass


@schedule_group.command("add", help="Schedule a recurring job; omitted fields match any value")
@click.argument("class_name")
@click.option("--type", "job_type", required=True, help="Type tag for the jobs it produces")
@click.option("--attrs", "attrs_json", default=None, help="Job attributes as a JSON object")
@click.option("--minute", type=int, default=None)
@click.option("--hour", type=int, default=None)
@click.option("--day-of-month", type=int, default=None)
@click.option("--month", type=int, default=None)
@click.option("--day-of-week", type=int, default=None, help="0 = Sunday")
@click.pass_obj
def schedule_add_cmd(cfg, class_name, job_type, attrs_json, minute, hour, day_of_month, month, day_of_week):
    try:
        job = _parse_attrs(attrs_json)
        job["class_name"] = class_name
        job["type"] = job_type
        backend = _scheduler(cfg)
        try:
            entry = backend.schedule(job, minute, hour, day_of_month, month, day_of_week)
        finally:
            backend.close()
        click.secho(f"Scheduled {entry.id} -> {class_name} ({_cron_str(entry.cron())})", fg="green")
    except USER_ERRORS as e:
        _fail(e)


def _cron_str(cron):
    return " ".join("*" if cron[k] is None else str(cron[k])
                    for k in ("minute", "hour", "day_of_month", "month", "day_of_week"))


@schedule_group.command("list", help="List scheduled jobs in insertion order")
@click.pass_obj
def schedule_list_cmd(cfg):
    backend = _scheduler(cfg)
    try:
        empty = True
        for entry in backend.all_entries():
            empty = False
            click.echo(f"{entry.id} | {_cron_str(entry.cron()):<16} | {entry.job['class_name']}")
        if empty:
            click.echo("No scheduled jobs.")
    finally:
        backend.close()


@schedule_group.command("remove", help="Unschedule a job")
@click.argument("entry_id")
@click.pass_obj
def schedule_remove_cmd(cfg, entry_id):
    backend = _scheduler(cfg)
    try:
        if backend.find(entry_id) is None:
            _fail(f"Schedule entry {entry_id} not found.")
        backend.delete(entry_id)
        click.secho(f"Removed schedule entry {entry_id}.", fg="green")
    finally:
        backend.close()


@schedule_group.command("due", help="Show which templates match a minute, without claiming them")
@click.option("--at", "at", default=None, help=AT_HELP)
@click.pass_obj
def schedule_due_cmd(cfg, at):
    try:
        instant = _parse_instant(at)
    except ValueError as e:
        _fail(e)
    backend = _scheduler(cfg)
    try:
        _dump(backend.get_jobs_for(instant, claim=False))
    finally:
        backend.close()


@schedule_group.command("clear", help="Delete every scheduled job")
@click.confirmation_option(prompt="Delete all scheduled jobs?")
@click.pass_obj
def schedule_clear_cmd(cfg):
    backend = _scheduler(cfg)
    try:
        backend.clear()
    finally:
        backend.close()
    click.secho("All scheduled jobs deleted.", fg="yellow")


# ---------- Tick ----------
@cli.command("tick", help="Claim this minute's scheduled jobs and enqueue them")
@click.option("--at", "at", default=None, help=AT_HELP)
@click.pass_obj
def tick_cmd(cfg, at):
    try:
        instant = _parse_instant(at)
    except ValueError as e:
        _fail(e)

    scheduler = _scheduler(cfg)
    pipeline = _pipeline(cfg)
    enqueued = failed = 0
    try:
        # templates are claimed already; one bad template must not drop the rest
        for template in scheduler.get_jobs_for(instant, claim=True):
            try:
                job = pipeline.enqueue(template)
            except ValueError as e:
                failed += 1
                click.secho(f"Error: schedule entry {template['id']} ({template['class_name']}): {e}", fg="red")
                continue
            enqueued += 1
            click.echo(f"Enqueued {job['id']} from schedule entry {template['id']} ({template['class_name']})")
        click.secho(f"{enqueued} job(s) enqueued for {instant:%Y-%m-%d %H:%M}.", fg="cyan")
    except USER_ERRORS as e:
        _fail(e)
    finally:
        pipeline.close()
        scheduler.close()
    if failed:
        click.secho(f"{failed} schedule entr(ies) could not be enqueued.", fg="red")
        raise SystemExit(1)


def main():
    cli()
