#!/usr/bin/env python3
"""
Call Scheduler CLI Tool

This tool provides management commands for the care-line call scheduling system.
Useful for booking check-in calls, placing calls on demand and pulling call reports.

Usage:
    python tools/call_scheduler_cli.py list-schedules <patient-id>
    python tools/call_scheduler_cli.py create-schedule <patient-id> <prompt-id> --type recurring --recurrence daily --at 2024-06-01T09:00:00
    python tools/call_scheduler_cli.py cancel-schedule <schedule-id>
    python tools/call_scheduler_cli.py call-now <patient-id> <prompt-id>
    python tools/call_scheduler_cli.py refresh-call <call-id>
    python tools/call_scheduler_cli.py time-blocks <patient-id> --date 2024-06-01
    python tools/call_scheduler_cli.py add-preset-prompt <patient-id> standard-health-check
    python tools/call_scheduler_cli.py run-due
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

import click
from dotenv import load_dotenv
from tabulate import tabulate

from config.redis import get_key_prefix
from scheduling.call_logic import format_duration_label
from scheduling.errors import SchedulingError
from scheduling.models import Prompt
from scheduling.scheduler import CallScheduler, build_scheduler
from shared.prompt_manager import PromptManager, prompt_manager
from utils.time_utils import format_for_patient, local_date, now_utc, parse_iso_to_utc


class CallSchedulerManager:
    """Wraps the scheduler with the lookups the CLI needs"""

    def __init__(self, scheduler: CallScheduler, presets: PromptManager = prompt_manager, redis_client=None):
        self.scheduler = scheduler
        self.presets = presets
        self.redis_client = redis_client

    def patient_timezone(self, patient_id: str) -> Optional[str]:
        patient = self.scheduler.directory.get_patient(patient_id)
        return patient.time_zone if patient else None

    def schedule_rows(self, patient_id: str) -> List[List[Any]]:
        timezone_name = self.patient_timezone(patient_id)
        rows = []
        for schedule in self.scheduler.list_schedules(patient_id):
            prompt = self.scheduler.directory.get_prompt(schedule.prompt_id)
            next_run = self.scheduler.next_execution(schedule)
            rows.append([
                schedule.id[:8],
                prompt.name if prompt else "Unknown Prompt",
                schedule.type.value,
                self.scheduler.describe_schedule(schedule),
                "Active" if schedule.is_active else "Cancelled",
                format_for_patient(next_run, timezone_name) if next_run else "-",
            ])
        return rows

    def call_rows(self, patient_id: str) -> List[List[Any]]:
        timezone_name = self.patient_timezone(patient_id)
        rows = []
        for call in self.scheduler.list_calls(patient_id):
            rows.append([
                call.id[:8],
                call.status.value,
                format_for_patient(call.created_at, timezone_name),
                format_duration_label(call.duration) or "-",
                call.provider_call_id or "-",
                call.error_message or "",
            ])
        return rows

    def add_preset_prompt(self, patient_id: str, preset: str) -> Prompt:
        """Copy a preset template onto a patient, matching by preset id or display name"""
        preset_id = preset
        if not (self.presets.prompts_dir / f"{preset}.yaml").exists():
            preset_id = self.presets.find_by_name(preset)
            if preset_id is None:
                raise click.BadParameter(f"Unknown preset '{preset}'")

        info = self.presets.get_preset_info(preset_id)
        existing = self.scheduler.directory.list_patient_prompts(patient_id)
        if any(p.name == info["name"] for p in existing):
            raise click.BadParameter(f"Preset '{info['name']}' is already added for this patient")

        prompt = Prompt(patient_id=patient_id, name=info["name"], prompt=self.presets.get_template(preset_id))
        return self.scheduler.directory.save_prompt(prompt)

    def redis_status(self) -> Dict[str, int]:
        """Count care-line keys by type"""
        key_types = {}
        for key in self.redis_client.scan_iter(f"{get_key_prefix()}:*"):
            key_str = key.decode() if isinstance(key, bytes) else key
            key_type = key_str.split(":")[1] if key_str.count(":") >= 1 else "other"
            key_types[key_type] = key_types.get(key_type, 0) + 1
        return key_types


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_iso_to_utc(value)
    except ValueError:
        raise click.BadParameter(f"Invalid ISO datetime: {value}")


def _fail(ctx, message: str):
    click.echo(f"❌ {message}")
    ctx.exit(1)


# CLI Commands
@click.group()
@click.option('--mock', is_flag=True, help="Use the mock voice provider (no real calls)")
@click.pass_context
def cli(ctx, mock):
    """Care-line Call Scheduler Management CLI"""
    load_dotenv()
    ctx.ensure_object(dict)
    if 'manager' not in ctx.obj:
        from config.redis import create_redis_connection
        from voice.provider import create_voice_provider

        redis_client = create_redis_connection()
        scheduler = build_scheduler(redis_client, provider=create_voice_provider(mock=mock))
        ctx.obj['manager'] = CallSchedulerManager(scheduler, redis_client=redis_client)


@cli.command()
@click.argument('patient_id')
@click.pass_context
def list_schedules(ctx, patient_id):
    """List a patient's call schedules"""
    manager = ctx.obj['manager']
    rows = manager.schedule_rows(patient_id)

    if not rows:
        click.echo("📋 No schedules found")
        return

    click.echo(f"📅 Found {len(rows)} schedules:")
    click.echo(tabulate(
        rows,
        headers=['ID', 'Prompt', 'Type', 'Schedule', 'Status', 'Next Call'],
        tablefmt='grid'
    ))


@cli.command()
@click.argument('patient_id')
@click.pass_context
def list_calls(ctx, patient_id):
    """List a patient's call history"""
    manager = ctx.obj['manager']
    rows = manager.call_rows(patient_id)

    if not rows:
        click.echo("📋 No calls found")
        return

    click.echo(f"📞 Found {len(rows)} calls:")
    click.echo(tabulate(
        rows,
        headers=['ID', 'Status', 'Placed', 'Duration', 'Provider ID', 'Error'],
        tablefmt='grid'
    ))


@cli.command()
@click.argument('patient_id')
@click.argument('prompt_id')
@click.option('--type', 'schedule_type', type=click.Choice(['one-time', 'recurring', 'now']),
              default='one-time', help="Schedule type")
@click.option('--at', 'scheduled_time', help="ISO datetime (time of day for recurring schedules)")
@click.option('--recurrence', type=click.Choice(['daily', 'weekly', 'monthly']), help="Recurrence rule")
@click.option('--until', 'recurrence_end_date', help="ISO date the recurrence ends")
@click.option('--day-of-week', type=click.IntRange(0, 6), help="0 = Sunday")
@click.option('--day-of-month', type=click.IntRange(1, 31))
@click.pass_context
def create_schedule(ctx, patient_id, prompt_id, schedule_type, scheduled_time, recurrence,
                    recurrence_end_date, day_of_week, day_of_month):
    """Create a one-time, recurring or immediate call schedule"""
    manager = ctx.obj['manager']

    try:
        schedule = manager.scheduler.create_schedule(
            patient_id=patient_id,
            prompt_id=prompt_id,
            type=schedule_type,
            scheduled_time=_parse_datetime(scheduled_time),
            recurrence_type=recurrence,
            recurrence_end_date=_parse_datetime(recurrence_end_date),
            day_of_week=day_of_week,
            day_of_month=day_of_month,
        )
    except SchedulingError as e:
        _fail(ctx, f"Error creating schedule: {e}")
        return

    click.echo(f"✅ Created schedule {schedule.id}")
    click.echo(f"   {manager.scheduler.describe_schedule(schedule)}")


@cli.command()
@click.argument('schedule_id')
@click.pass_context
def cancel_schedule(ctx, schedule_id):
    """Cancel a schedule"""
    manager = ctx.obj['manager']

    try:
        manager.scheduler.cancel_schedule(schedule_id)
    except SchedulingError as e:
        _fail(ctx, f"Error cancelling schedule: {e}")
        return

    click.echo(f"✅ Cancelled schedule {schedule_id}")


@cli.command()
@click.argument('patient_id')
@click.argument('prompt_id')
@click.option('--refresh-in', type=int, help="Queue a report refresh after this many seconds")
@click.pass_context
def call_now(ctx, patient_id, prompt_id, refresh_in):
    """Place a call immediately"""
    manager = ctx.obj['manager']

    try:
        call = manager.scheduler.call_now(patient_id, prompt_id)
    except SchedulingError as e:
        _fail(ctx, f"Failed to initiate call: {e}")
        return

    click.echo(f"📞 Calling {call.phone_number} now...")
    click.echo(f"   Call ID: {call.id} | Provider ID: {call.provider_call_id} | Status: {call.status.value}")

    if refresh_in:
        from scheduling.tasks import enqueue_call_refresh
        rq_job = enqueue_call_refresh(call.id, delay_seconds=refresh_in)
        click.echo(f"⏰ Report refresh queued (job: {rq_job.id})")


@cli.command()
@click.argument('call_id')
@click.pass_context
def refresh_call(ctx, call_id):
    """Fetch the latest transcript and end-of-call report"""
    manager = ctx.obj['manager']

    try:
        call = manager.scheduler.refresh_call(call_id)
    except SchedulingError as e:
        _fail(ctx, f"Sync failed: {e}")
        return

    click.echo(f"✅ Report synced - status: {call.status.value}, duration: {format_duration_label(call.duration) or '-'}")
    if call.analysis.summary:
        click.echo(f"\n📝 Summary:\n{call.analysis.summary}")
    if call.transcript_entries:
        click.echo(f"\n💬 Transcript ({len(call.transcript_entries)} turns):")
        click.echo(call.transcript)
    if call.artifacts.recording:
        click.echo(f"\n🎧 Recording: {call.artifacts.recording}")


@cli.command()
@click.pass_context
def run_due(ctx):
    """Run one pass over the due schedules"""
    manager = ctx.obj['manager']
    summary = manager.scheduler.run_due_schedules()

    click.echo(f"✅ Executed: {summary.executed} | ❌ Failed: {summary.failed} | ⏭️  Skipped: {summary.skipped}")
    for error in summary.errors:
        click.echo(f"   {error}")


@cli.command()
@click.argument('patient_id')
@click.option('--date', 'day', help="Local date (YYYY-MM-DD), defaults to today")
@click.pass_context
def time_blocks(ctx, patient_id, day):
    """Show bookable 30-minute blocks for a day"""
    manager = ctx.obj['manager']

    if day:
        try:
            target = date.fromisoformat(day)
        except ValueError:
            raise click.BadParameter(f"Invalid date: {day}")
    else:
        target = local_date(now_utc(), manager.patient_timezone(patient_id), manager.scheduler.default_timezone)

    blocks = manager.scheduler.time_blocks(patient_id, target)
    rows = [[block.label, "Booked" if block.occupied else "Available"] for block in blocks]
    click.echo(f"🗓️  Time blocks for {target.isoformat()}:")
    click.echo(tabulate(rows, headers=['Time', 'Status'], tablefmt='simple'))


@cli.command()
@click.pass_context
def list_presets(ctx):
    """List preset prompt templates"""
    manager = ctx.obj['manager']
    presets = manager.presets.list_presets()

    if not presets:
        click.echo("📋 No preset prompts found")
        return

    rows = [[p['id'], p['name'], p['description']] for p in presets]
    click.echo(tabulate(rows, headers=['ID', 'Name', 'Description'], tablefmt='grid'))


@cli.command()
@click.argument('patient_id')
@click.argument('preset')
@click.pass_context
def add_preset_prompt(ctx, patient_id, preset):
    """Add a preset prompt to a patient (by preset id or name)"""
    manager = ctx.obj['manager']

    if manager.scheduler.directory.get_patient(patient_id) is None:
        _fail(ctx, f"Patient {patient_id} not found")
        return

    prompt = manager.add_preset_prompt(patient_id, preset)
    click.echo(f"✅ Added prompt '{prompt.name}' ({prompt.id})")


@cli.command()
@click.pass_context
def redis_status(ctx):
    """Check Redis connection and care-line data status"""
    manager = ctx.obj['manager']

    if manager.redis_client is None:
        _fail(ctx, "No Redis connection configured")
        return

    ping_result = manager.redis_client.ping()
    click.echo(f"✅ Redis connection: {'OK' if ping_result else 'Failed'}")

    key_types = manager.redis_status()
    click.echo(f"📊 Care-line keys in Redis: {sum(key_types.values())}")
    for key_type, count in sorted(key_types.items()):
        click.echo(f"   {key_type}: {count}")


if __name__ == '__main__':
    cli()
