"""
End-to-end business-plan journey for one virtual-user iteration.

The journey is a fixed pipeline of stages::

    01_Login -> 02_List_Business_Plans -> 03_Create_Business_Plan
      -> 04_Title_And_Subsections -> [05_Scoring] -> 06_Expert_Connect

Login and plan creation are *required*: without an access token or a plan
id nothing downstream can run, so their failure ends the iteration right
away.  Every other stage only marks the iteration as unsuccessful and lets
the journey continue.  Whatever happens, ``total_flow_success_rate``
receives exactly one sample per iteration.

The iteration deadline (the profile's maximum iteration duration) is
checked before every stage and again before each request group inside the
longer stages; once it has passed no further request is issued.

AI-backed steps (per-subsection checklist and plan scoring) are decided
once per iteration in :meth:`BusinessPlanFlow.build_plan` from the run
configuration instead of being checked inline.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loadtest import fixtures
from loadtest.config import RunConfig
from loadtest.metrics import (
    LIST_PLANS_STATS_NAME,
    CHECKLIST_SUCCESS_RATE,
    CREATE_PLAN_SUCCESS_RATE,
    ERROR_COUNTER,
    EXPERT_CONNECT_SUCCESS_RATE,
    LIST_SUCCESS_RATE,
    LOGIN_SUCCESS_RATE,
    SCORING_SUCCESS_RATE,
    TEMP_SAVE_SUCCESS_RATE,
    TOTAL_FLOW_SUCCESS_RATE,
    MetricsCollector,
)
from loadtest.responses import (
    decode_experts,
    decode_fetched_subsection,
    decode_list,
    decode_plan_id,
    decode_requested_expert_ids,
    decode_result,
    decode_saved_subsection,
    decode_tokens,
    expert_id,
)
from loadtest.steps import (
    StepExecutor,
    auth_header,
    decodes,
    faster_than,
    multipart_header,
    status_in,
)

logger = logging.getLogger(__name__)

LOGIN_LIMIT_MS = 800
LIST_LIMIT_MS = 1500
CREATE_LIMIT_MS = 1000
SCORING_LIMIT_MS = 50_000


@dataclass
class IterationState:
    """Per-iteration values threaded from one stage to the next."""

    access_token: str | None = None
    plan_id: Any = None
    flow_success: bool = True
    deadline: float = math.inf
    timed_out: bool = False

    def fail(self) -> None:
        self.flow_success = False

    @property
    def headers(self) -> dict[str, str]:
        return auth_header(self.access_token or "")


@dataclass(frozen=True)
class Stage:
    """
    One stage of the journey.

    Attributes:
        name: Stage label, also used for log prefixes.
        run: Callable executing the stage; returns True on success.
        required: If True, a failed stage ends the iteration.
        pause_after: Think-time in seconds after the stage completes.
    """

    name: str
    run: Callable[[IterationState], bool]
    required: bool = False
    pause_after: float = 0.0


@dataclass(frozen=True)
class SubsectionStep:
    """Calls made for one subsection type inside stage 04."""

    subsection_type: str
    with_checklist: bool


class BusinessPlanFlow:
    """
    Runs the business-plan journey for one virtual user.

    Args:
        executor: Step executor bound to the user's HTTP client.
        metrics: Run-wide metrics collector.
        config: Resolved run configuration.
        pause: Think-time function (``time.sleep`` under Locust's
            monkey-patched runtime).
        clock: Monotonic clock used for the iteration deadline.
    """

    def __init__(
        self,
        executor: StepExecutor,
        metrics: MetricsCollector,
        config: RunConfig,
        *,
        pause: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.executor = executor
        self.metrics = metrics
        self.config = config
        self.pause = pause
        self.clock = clock
        self.iteration = 0

    # =================================================================
    # Plan construction
    # =================================================================

    def build_plan(self) -> list[Stage]:
        """Return the ordered stages for one iteration."""
        stages = [
            Stage("01_Login", self._login, required=True, pause_after=1),
            Stage("02_List_Business_Plans", self._list_plans, pause_after=2),
            Stage("03_Create_Business_Plan", self._create_plan, required=True, pause_after=2),
            Stage("04_Title_And_Subsections", self._save_sections, pause_after=2),
        ]
        if self.config.ai_enabled:
            stages.append(Stage("05_Scoring", self._score_plan))
        stages.append(Stage("06_Expert_Connect", self._connect_expert))
        return stages

    def subsection_steps(self) -> list[SubsectionStep]:
        return [
            SubsectionStep(subsection_type, with_checklist=self.config.ai_enabled)
            for subsection_type in fixtures.SUBSECTION_TYPES
        ]

    # =================================================================
    # Iteration
    # =================================================================

    def run_iteration(self) -> bool:
        """
        Execute one full journey and record its overall outcome.

        Returns:
            True if every stage succeeded.
        """
        self.iteration += 1
        self.executor.iteration = self.iteration
        state = IterationState(
            deadline=self.clock() + self.config.profile.max_iteration_duration,
        )

        for stage in self.build_plan():
            if self._expired(state, stage.name):
                return self._abort(state)

            ok = stage.run(state)
            if state.timed_out:
                return self._abort(state)
            if not ok:
                state.fail()
                if stage.required:
                    return self._abort(state)
            if stage.pause_after:
                self.pause(stage.pause_after)

        self.metrics.add_rate(TOTAL_FLOW_SUCCESS_RATE, state.flow_success)
        logger.info(
            "%s Flow %s, planId=%s, ENABLE_AI=%s",
            self.executor.prefix,
            "SUCCESS" if state.flow_success else "FAILED",
            state.plan_id,
            self.config.ai_enabled,
        )
        self.pause(1)
        return state.flow_success

    def _abort(self, state: IterationState) -> bool:
        state.fail()
        self.metrics.add_rate(TOTAL_FLOW_SUCCESS_RATE, False)
        self.pause(1)
        return False

    def _expired(self, state: IterationState, before: str) -> bool:
        """True once the iteration deadline has passed; logged and counted once."""
        if state.timed_out:
            return True
        if self.clock() <= state.deadline:
            return False
        state.timed_out = True
        logger.error(
            "%s iteration exceeded %ss before %s",
            self.executor.prefix,
            self.config.profile.max_iteration_duration,
            before,
        )
        self._error("iteration_timeout")
        return True

    def _error(self, step: str) -> None:
        self.metrics.add_count(ERROR_COUNTER, 1, tag=step)

    # =================================================================
    # Stages
    # =================================================================

    def _login(self, state: IterationState) -> bool:
        outcome = self.executor.execute(
            "01_Login",
            "POST",
            "/auth/sign-in",
            name="Login",
            json={
                "email": self.config.credentials.email,
                "password": self.config.credentials.password,
            },
            headers={"Content-Type": "application/json", "User-Agent": "locust-load-test"},
            timeout=self.config.request_timeout,
            expectations=[
                status_in(200),
                decodes("contains tokens", decode_tokens),
                faster_than(LOGIN_LIMIT_MS),
            ],
        )

        if outcome.success:
            state.access_token = decode_tokens(outcome.body).value.access_token
        else:
            self._error("login")

        self.metrics.add_rate(LOGIN_SUCCESS_RATE, outcome.success)
        return state.access_token is not None

    def _list_plans(self, state: IterationState) -> bool:
        outcome = self.executor.execute(
            "02_List_Business_Plans",
            "GET",
            "/business-plans",
            name=LIST_PLANS_STATS_NAME,
            headers=state.headers,
            timeout=self.config.request_timeout,
            expectations=[
                status_in(200),
                decodes("returns data", decode_list),
                faster_than(LIST_LIMIT_MS),
            ],
        )

        self.metrics.add_rate(LIST_SUCCESS_RATE, outcome.success)
        if not outcome.success:
            self._error("list")
        return outcome.success

    def _create_plan(self, state: IterationState) -> bool:
        outcome = self.executor.execute(
            "03_Create_Business_Plan",
            "POST",
            "/business-plans",
            name="CreatePlan",
            json=fixtures.business_plan_payload(self.executor.user_id, self.iteration),
            headers=state.headers,
            timeout=self.config.request_timeout,
            expectations=[
                status_in(200, 201),
                decodes("has id", decode_plan_id),
                faster_than(CREATE_LIMIT_MS),
            ],
        )

        self.metrics.add_rate(CREATE_PLAN_SUCCESS_RATE, outcome.success)
        if outcome.success:
            state.plan_id = decode_plan_id(outcome.body).value
        else:
            self._error("create_plan")
        return state.plan_id is not None

    def _save_sections(self, state: IterationState) -> bool:
        headers = state.headers
        base = f"/business-plans/{state.plan_id}"
        section_ok = True

        title_get = self.executor.execute(
            "04-1_Title_Get",
            "GET",
            f"{base}/titles",
            name="GetTitle",
            headers=headers,
            timeout=self.config.request_timeout,
            expectations=[status_in(200), decodes("success result", decode_result)],
        )
        if not title_get.success:
            section_ok = False
            self._error("title_get")

        title_save = self.executor.execute(
            "04-2_Title_Save",
            "PATCH",
            base,
            name="SaveTitle",
            json=fixtures.title_payload(),
            headers=headers,
            timeout=self.config.request_timeout,
            expectations=[status_in(200), decodes("success result", decode_result)],
        )
        if not title_save.success:
            section_ok = False
            self._error("title_save")

        checklist_ok = True
        for step in self.subsection_steps():
            subsection_type = step.subsection_type
            if self._expired(state, f"subsection {subsection_type}"):
                section_ok = False
                break
            payload = fixtures.subsection_payload(subsection_type)

            saved = self.executor.execute(
                f"04-3_Subsection_Save_{subsection_type}",
                "POST",
                f"{base}/subsections",
                name=f"Subsection_Save_{subsection_type}",
                json=payload,
                headers=headers,
                timeout=self.config.request_timeout,
                expectations=[
                    status_in(200, 201),
                    decodes("success", decode_saved_subsection(subsection_type)),
                ],
            )
            if not saved.success:
                section_ok = False
                self._error(f"subsection_save_{subsection_type}")

            fetched = self.executor.execute(
                f"04-4_Subsection_Get_{subsection_type}",
                "GET",
                f"{base}/subsections/{subsection_type}",
                name=f"SubsectionGet_{subsection_type}",
                headers=headers,
                timeout=self.config.request_timeout,
                expectations=[
                    status_in(200),
                    decodes("success", decode_fetched_subsection(subsection_type)),
                ],
            )
            if not fetched.success:
                section_ok = False
                self._error(f"subsection_get_{subsection_type}")

            if not step.with_checklist:
                continue
            if self._expired(state, f"checklist {subsection_type}"):
                checklist_ok = False
                break
            if not self._check_and_update(base, headers, step, payload):
                checklist_ok = False

        self.metrics.add_rate(TEMP_SAVE_SUCCESS_RATE, section_ok)
        return section_ok and checklist_ok

    def _check_and_update(
        self,
        base: str,
        headers: dict[str, str],
        step: SubsectionStep,
        payload: dict[str, Any],
    ) -> bool:
        outcome = self.executor.execute(
            f"04-5_Subsection_CheckAndUpdate_{step.subsection_type}",
            "POST",
            f"{base}/subsections/check-and-update",
            name=f"Subsection_CheckAndUpdate_{step.subsection_type}",
            json=payload,
            headers=headers,
            timeout=self.config.scoring_timeout,
            expectations=[status_in(200), decodes("SUCCESS result", decode_result)],
        )

        self.metrics.add_rate(CHECKLIST_SUCCESS_RATE, outcome.success)
        if not outcome.success:
            self._error(f"checklist_{step.subsection_type}")
        return outcome.success

    def _score_plan(self, state: IterationState) -> bool:
        outcome = self.executor.execute(
            "05_Scoring",
            "POST",
            f"/ai-reports/evaluation/{state.plan_id}",
            name="Scoring_AiReportEvaluation",
            headers=state.headers,
            timeout=self.config.scoring_timeout,
            expectations=[
                status_in(200),
                decodes("SUCCESS result", decode_result),
                faster_than(SCORING_LIMIT_MS),
            ],
        )

        self.metrics.add_rate(SCORING_SUCCESS_RATE, outcome.success)
        if not outcome.success:
            self._error("scoring")
        return outcome.success

    def _connect_expert(self, state: IterationState) -> bool:
        headers = state.headers
        prefix = self.executor.prefix

        directory = self.executor.execute(
            "06-1_Experts",
            "GET",
            "/experts",
            name="Experts",
            headers=headers,
            timeout=self.config.request_timeout,
            expectations=[status_in(200)],
        )
        experts = decode_experts(directory.body) if directory.success else []
        if not directory.success:
            self._error("experts")
        else:
            logger.info("%s[06-1] experts in directory: %d", prefix, len(experts))

        if not experts:
            self.metrics.add_rate(EXPERT_CONNECT_SUCCESS_RATE, False)
            return False

        connect_ok = True
        if self._expired(state, "expert applications"):
            self.metrics.add_rate(EXPERT_CONNECT_SUCCESS_RATE, False)
            return False

        applications = self.executor.execute(
            "06-2_Expert_Applications",
            "GET",
            f"/expert-applications?businessPlanId={state.plan_id}",
            name="Expert_Applications",
            headers=headers,
            timeout=self.config.request_timeout,
            expectations=[status_in(200, 404)],
        )

        requested: set[Any] = set()
        if applications.success and applications.http_status == 200:
            requested = decode_requested_expert_ids(applications.body)
            logger.info("%s[06-2] already requested experts: %d", prefix, len(requested))
        elif not applications.success:
            connect_ok = False
            self._error("expert_applications")

        selected = select_expert(experts, requested)
        if selected is None:
            logger.warning("%s[06-3] no expert left to request", prefix)
            self.metrics.add_rate(EXPERT_CONNECT_SUCCESS_RATE, False)
            return False

        if self._expired(state, "expert request"):
            self.metrics.add_rate(EXPERT_CONNECT_SUCCESS_RATE, False)
            return False

        logger.info("%s[06-3] selected expert id: %s", prefix, selected)
        request = self.executor.execute(
            "06-3_Expert_Request",
            "POST",
            f"/expert-applications/{selected}/request?businessPlanId={state.plan_id}",
            name="Expert_Request",
            files=fixtures.expert_request_file(),
            headers=multipart_header(state.access_token or ""),
            timeout=self.config.request_timeout,
            expectations=[status_in(200)],
        )
        if not request.success:
            connect_ok = False
            self._error("expert_request")

        self.metrics.add_rate(EXPERT_CONNECT_SUCCESS_RATE, connect_ok)
        return connect_ok


def select_expert(experts: list[dict[str, Any]], requested: set[Any]) -> Any:
    """
    Pick the first expert in directory order that has not been requested.

    Returns:
        The expert id, or ``None`` if every listed expert was requested
        (or no entry carries an id).
    """
    for expert in experts:
        candidate = expert_id(expert)
        if candidate is not None and candidate not in requested:
            return candidate
    return None
