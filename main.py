# main.py
import asyncio
import json
import os
import sys
from pathlib import Path

from autofill_errors import PlanValidationError
from bots._profile_launch import launch_persistent, shutdown
from controller import ExecutionController, coerce_plan
from engine_config import EngineConfig, load_config
from engine_events import AUTOFILL_COMPLETE, REQUIRES_USER_INTERVENTION, UPDATE_PROGRESS, EventBus
from execution_run import RunState
from plan_schema import NavigateStep, Plan
from run_journal import RunJournal
from submissions import InMemorySubmissionStore, SubmissionLifecycle

CLI_DEALER_ID = "local-dealer"
CLI_APPLICATION_ID = "local-application"


def _first_url(plan: Plan) -> str:
    for step in plan.steps:
        if isinstance(step, NavigateStep) and step.url:
            return step.url
    return ""


async def _prompt_for_intervention(controller: ExecutionController, message: str) -> None:
    loop = asyncio.get_running_loop()
    print(f"\n🛑 Please handle this in the browser: {message}")
    answer = await loop.run_in_executor(
        None, input, "👉 Press Enter once you've finished the requested action (or type 'c' to cancel)... "
    )
    if answer.strip().lower() == "c":
        controller.cancel()
    else:
        controller.resume()


async def run_cli(plan: Plan, lender_url: str, config: EngineConfig) -> int:
    events = EventBus()
    lifecycle = SubmissionLifecycle(InMemorySubmissionStore())
    submission = await lifecycle.open(CLI_DEALER_ID, CLI_APPLICATION_ID, lender_url, plan.to_dict())
    print(f"🧾 Submission {submission.id} opened for {submission.lender_name}")

    playwright, context, page = await launch_persistent(lender_url, config.profile_dir, headless=config.headless)
    controller = ExecutionController(
        page,
        config=config,
        events=events,
        lifecycle=lifecycle,
        journal=RunJournal(Path(config.capture_dir)),
    )
    events.on(UPDATE_PROGRESS, lambda e: print(f"📈 {e.progress:3d}% {e.status}"))
    events.on(REQUIRES_USER_INTERVENTION, lambda e: _prompt_for_intervention(controller, e.message))
    events.on(AUTOFILL_COMPLETE, lambda e: print(f"{'✅' if e.success else '❌'} {e.message}"))

    try:
        run = await controller.run(plan, submission_id=submission.id)
    except (KeyboardInterrupt, asyncio.CancelledError):
        controller.cancel()
        run = await controller.wait()
    finally:
        await shutdown(playwright, context)

    final = await lifecycle.store.get_submission_by_id(submission.id)
    print("\n--- 🏁 RUN SUMMARY ---\n")
    print(json.dumps(run.snapshot(), indent=2))
    if final is not None:
        print(json.dumps(final.to_dict(), indent=2))
    return 0 if run.state is RunState.COMPLETED else 1


if __name__ == "__main__":
    plan_path = sys.argv[1] if len(sys.argv) > 1 else os.environ.get("AUTOFILL_PLAN_PATH", "")
    lender_url = sys.argv[2] if len(sys.argv) > 2 else os.environ.get("AUTOFILL_LENDER_URL", "")

    if not plan_path:
        print("Usage: python main.py <plan.json> [lender_url]")
        sys.exit(2)

    config = load_config()

    # -------------------------------
    # Validate the plan before executing
    # -------------------------------
    try:
        plan = coerce_plan(Path(plan_path).read_text(encoding="utf-8"))
    except OSError as exc:
        print(f"❌ Could not read plan file {plan_path}: {exc}")
        sys.exit(2)
    except PlanValidationError as exc:
        print(f"❌ {exc}")
        for error in exc.errors:
            print(f"   - {error}")
        sys.exit(1)

    print("\n--- 🗺️  AUTOMATION PLAN ---\n")
    print(json.dumps(plan.to_dict(), indent=2))

    lender_url = lender_url or _first_url(plan)
    if not lender_url:
        print("❌ No lender URL given and the plan never navigates anywhere.")
        sys.exit(2)

    # -------------------------------
    # Execute the plan in Playwright
    # -------------------------------
    print("\n🚀 Beginning autofill...\n")
    try:
        exit_code = asyncio.run(run_cli(plan, lender_url, config))
    except KeyboardInterrupt:
        print("\n✋ Interrupted.")
        exit_code = 1
    sys.exit(exit_code)
