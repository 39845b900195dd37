"""End-to-end task flow: steps, progress and the activity trail together."""

import pytest
from freezegun import freeze_time

from src.models.activity import ActivityAction
from src.models.notification import NotificationType
from src.models.progress import ProgressStatus
from src.models.step import StepStatus
from src.models.task import TaskStatus
from src.services.task_service import TaskService
from src.utils.errors import InvalidStateError
from tests.utils.assertions import assert_single_active_step
from tests.utils.factories import create_task
from tests.utils.helpers import day


@pytest.fixture
def service(storage, activity_logger, notifier, mailer):
    # default wall clock, driven by freezegun
    return TaskService(storage, activity_logger=activity_logger, notifier=notifier, mailer=mailer)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_three_step_task_runs_to_completion(service, storage, activity_logger, notifier):
    task = storage.add_task(create_task(start_date=day(0), end_date=day(10), created_by="OWNER"))

    with freeze_time(day(1)):
        steps = [
            (await service.create_step(task.task_id, "OWNER", title)).step
            for title in ("Research", "Draft", "Review")
        ]
        view = await service.get_task(task.task_id)

    assert [s.is_active for s in steps] == [True, False, False]
    assert view.task.status == TaskStatus.IN_PROGRESS
    assert view.progress.auto_progress == 10
    assert view.progress.progress_color.status == ProgressStatus.ON_TRACK

    with freeze_time(day(3)):
        await service.stop_work(task.task_id, "OWNER", "Waiting on data access")
    with freeze_time(day(4)):
        await service.resume_work(task.task_id, "OWNER")
        await service.complete_step(steps[0].step_id, "OWNER")

    assert storage.steps[steps[1].step_id].is_active is True
    assert_single_active_step(storage.steps.values())

    with freeze_time(day(6.5)):
        await service.update_step(steps[2].step_id, "OWNER", status="blocked")
        view = await service.get_task(task.task_id)

    assert view.progress.progress_color.status == ProgressStatus.URGENT

    with freeze_time(day(7)):
        result = await service.complete_step(steps[1].step_id, "OWNER")

    # review is blocked, so finishing the draft finishes the task
    assert result.activated_step is None
    stored = storage.tasks[task.task_id]
    assert stored.status == TaskStatus.COMPLETED
    assert stored.manual_progress == 100
    assert [log.reason for log in stored.stop_logs] == ["Waiting on data access"]
    assert storage.steps[steps[2].step_id].status == StepStatus.BLOCKED
    assert storage.steps[steps[1].step_id].completed_at == day(7)

    with freeze_time(day(12)):
        view = await service.get_task(task.task_id)

    assert view.progress.overdue is True
    assert view.progress.display_progress == 100
    assert view.progress.days_remaining == -2

    actions = [c.args[2] for c in activity_logger.record.await_args_list]
    assert actions[:3] == [ActivityAction.CREATED] * 3
    assert ActivityAction.PAUSED in actions
    assert ActivityAction.RESUMED in actions
    assert notifier.notify_users.await_args.args[1] == NotificationType.TASK_COMPLETED


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stale_writer_loses(service, storage):
    task = storage.add_task(create_task(start_date=day(0), end_date=day(10)))
    stale = await storage.load_task(task.task_id)

    with freeze_time(day(2)):
        await service.stop_work(task.task_id, "U1", "Blocked on review")

    stale.manual_progress = 10
    with pytest.raises(InvalidStateError):
        await storage.save_task(stale)

    assert storage.tasks[task.task_id].status == TaskStatus.PAUSED
