"""
Access gate decisions (pure function plus the remote stimulus-control check).

Requirements:
- No identity → /login; still loading → no decision yet
- Staff are never subject to onboarding redirects
- Students without a self-contract are held on /self-contract
- Students with a contract but no stimulus-control record → /stimulus-control
- A failing stimulus-control lookup lets the user through (fail open)
"""

import pytest

from backend.identity_access.domain import Identity, StimulusControlRecord
from backend.identity_access.gate import (
    LOADING,
    AccessGate,
    GateDecision,
    GateOutcome,
    StimulusCheck,
    decide,
    decide_after_check,
    normalize_path,
)
from backend.school_api.errors import ApiUnavailableError
from backend.tests.fakes import ADMIN, STUDENT_NEW, STUDENT_WITH_CONTRACT, TEACHER


pytestmark = pytest.mark.anyio("asyncio")


def _identity(payload):
    return Identity.model_validate(payload)


class _Lookup:
    def __init__(self, records=None, exc=None):
        self.records = records or []
        self.exc = exc
        self.calls = 0

    async def list_stimulus_controls(self):
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return self.records


def test_loading_identity_yields_loading_decision():
    assert decide(LOADING, "/dashboard") == GateDecision.loading()


def test_missing_identity_redirects_to_login():
    decision = decide(None, "/attendance")
    assert decision.outcome is GateOutcome.REDIRECT
    assert decision.location == "/login"


@pytest.mark.parametrize("payload", [TEACHER, ADMIN])
@pytest.mark.parametrize("path", ["/dashboard", "/self-contract", "/stimulus-control", "/users"])
def test_staff_are_always_allowed(payload, path):
    assert decide(_identity(payload), path).allowed


def test_student_without_contract_is_sent_to_self_contract():
    decision = decide(_identity(STUDENT_NEW), "/dashboard")
    assert decision == GateDecision.redirect("/self-contract")


def test_student_without_contract_may_stay_on_self_contract():
    assert decide(_identity(STUDENT_NEW), "/self-contract").allowed
    assert decide(_identity(STUDENT_NEW), "/self-contract/").allowed


def test_student_without_contract_cannot_open_stimulus_control():
    decision = decide(_identity(STUDENT_NEW), "/stimulus-control")
    assert decision.location == "/self-contract"


def test_blank_contract_counts_as_missing():
    payload = dict(STUDENT_NEW, student={"id": 3, "self_contract": "   "})
    assert decide(_identity(payload), "/reward").location == "/self-contract"


def test_student_without_student_record_is_sent_to_self_contract():
    payload = {"id": 11, "role": "student", "name": "Tanpa Data"}
    assert decide(_identity(payload), "/dashboard").location == "/self-contract"


def test_student_with_contract_needs_remote_check_on_regular_pages():
    step = decide(_identity(STUDENT_WITH_CONTRACT), "/attendance")
    assert isinstance(step, StimulusCheck)
    assert step.student_id == 3


@pytest.mark.parametrize("path", ["/stimulus-control", "/self-contract", "/stimulus-control/"])
def test_student_with_contract_skips_check_on_onboarding_pages(path):
    assert decide(_identity(STUDENT_WITH_CONTRACT), path).allowed


def test_decide_after_check_compares_ids_as_strings():
    check = StimulusCheck(student_id=3)
    records = [StimulusControlRecord(id=1, student_id="3", value="x")]
    assert decide_after_check(check, records).allowed
    assert decide_after_check(check, []).location == "/stimulus-control"


def test_normalize_path_strips_trailing_slash_only():
    assert normalize_path("/dashboard/") == "/dashboard"
    assert normalize_path("/") == "/"
    assert normalize_path("") == "/"


@pytest.mark.anyio
async def test_gate_redirects_student_without_stimulus_record():
    lookup = _Lookup(records=[StimulusControlRecord(id=9, student_id=99, value="lain")])
    decision = await AccessGate(lookup).evaluate(_identity(STUDENT_WITH_CONTRACT), "/dashboard")
    assert decision == GateDecision.redirect("/stimulus-control")
    assert lookup.calls == 1


@pytest.mark.anyio
async def test_gate_allows_student_with_stimulus_record():
    lookup = _Lookup(records=[StimulusControlRecord(id=9, student_id=3, value="Matikan HP")])
    assert (await AccessGate(lookup).evaluate(_identity(STUDENT_WITH_CONTRACT), "/dashboard")).allowed


@pytest.mark.anyio
async def test_gate_fails_open_when_lookup_fails():
    lookup = _Lookup(exc=ApiUnavailableError("ConnectError"))
    decision = await AccessGate(lookup).evaluate(_identity(STUDENT_WITH_CONTRACT), "/attendance")
    assert decision.allowed


@pytest.mark.anyio
async def test_gate_checks_again_on_every_navigation():
    lookup = _Lookup(records=[StimulusControlRecord(id=9, student_id=3, value="x")])
    gate = AccessGate(lookup)
    await gate.evaluate(_identity(STUDENT_WITH_CONTRACT), "/dashboard")
    await gate.evaluate(_identity(STUDENT_WITH_CONTRACT), "/reward")
    assert lookup.calls == 2


@pytest.mark.anyio
@pytest.mark.parametrize(
    "records",
    [[], [StimulusControlRecord(id=9, student_id=3, value="x")]],
)
async def test_same_inputs_give_same_decision(records):
    gate = AccessGate(_Lookup(records=records))
    first = await gate.evaluate(_identity(STUDENT_WITH_CONTRACT), "/dashboard")
    second = await gate.evaluate(_identity(STUDENT_WITH_CONTRACT), "/dashboard")
    assert first == second


@pytest.mark.anyio
async def test_gate_skips_lookup_for_staff():
    lookup = _Lookup()
    await AccessGate(lookup).evaluate(_identity(TEACHER), "/dashboard")
    assert lookup.calls == 0
