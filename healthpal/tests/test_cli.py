"""
Terminal Client Tests.

The click commands run against an httpx.MockTransport standing in for the
API, so only request shaping and output are under test here.
"""

import json

import httpx
import pytest
from click.testing import CliRunner

from healthpal.cli.client import ApiClient, ApiError
from healthpal.cli.main import cli

BASE = "http://api.test/v1"


class FakeApi:
    """Route table keyed by (method, path); records every request body."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body, request.headers.get("authorization")))
        status, payload = self.routes.get((request.method, request.url.path), (404, {"error": "Not Found"}))
        return httpx.Response(status, json=payload)


@pytest.fixture
def token_file(tmp_path):
    return str(tmp_path / "token")


def _client(routes, token_file, token=None):
    api = FakeApi(routes)
    client = ApiClient(BASE, token_file, transport=httpx.MockTransport(api))
    if token:
        client.save_token(token)
    return client, api


def test_login_saves_token(token_file):
    client, api = _client({
        ("POST", "/v1/auth/login"): (200, {"access_token": "tok-123", "token_type": "bearer", "user_id": 4,
                                           "full_name": "Sara Donor", "email": "sara@example.com",
                                           "role": "donor"}),
    }, token_file)

    result = CliRunner().invoke(cli, ["login", "--email", "sara@example.com", "--password", "pw123456"], obj=client)

    assert result.exit_code == 0, result.output
    assert "Welcome, Sara Donor" in result.output
    assert client.token == "tok-123"
    assert api.requests[0][3] is None


def test_login_failure_shows_api_error(token_file):
    client, _ = _client({
        ("POST", "/v1/auth/login"): (401, {"error": "Invalid credentials", "error_code": "ERR_UNAUTHORIZED"}),
    }, token_file)

    result = CliRunner().invoke(cli, ["login", "--email", "x@example.com", "--password", "bad"], obj=client)

    assert result.exit_code == 1
    assert "Invalid credentials" in result.output
    assert client.token is None


def test_commands_require_login(token_file):
    client, api = _client({}, token_file)
    result = CliRunner().invoke(cli, ["history"], obj=client)
    assert result.exit_code == 1
    assert "Not logged in" in result.output
    assert api.requests == []


def test_donate_warns_when_exceeding_remaining(token_file):
    client, api = _client({
        ("GET", "/v1/sponsorships"): (200, [{
            "id": 1, "beneficiary_id": 2, "patient_name": "Layla Patient", "treatment_type": "Heart surgery",
            "description": "Urgent", "goal_amount": 100.0, "donated_amount": 60.0, "status": "open",
        }]),
        ("POST", "/v1/donations"): (201, {
            "transactionId": 7, "amount": 50.0, "status": "completed", "isFunded": True,
            "sponsorship_funded_amount": 110.0, "sponsorship_goal": 100.0,
        }),
    }, token_file, token="tok-donor")

    result = CliRunner().invoke(
        cli, ["donate", "--sponsorship-id", "1", "--amount", "50", "--method", "card"], obj=client
    )

    assert result.exit_code == 0, result.output
    assert "Remaining to fund: $40.00" in result.output
    assert "Amount exceeds remaining needed" in result.output
    assert "Transaction ID: 7" in result.output
    assert "fully funded the sponsorship" in result.output

    method, path, body, auth = api.requests[-1]
    assert (method, path) == ("POST", "/v1/donations")
    assert body == {"sponsorship_id": 1, "amount": 50.0, "payment_method": "card"}
    assert auth == "Bearer tok-donor"


def test_donate_interactive_selection(token_file):
    client, api = _client({
        ("GET", "/v1/sponsorships"): (200, [
            {"id": 3, "patient_name": "A", "treatment_type": "Dialysis", "goal_amount": 500.0,
             "donated_amount": 0.0, "status": "open"},
            {"id": 9, "patient_name": "B", "treatment_type": "Surgery", "goal_amount": 200.0,
             "donated_amount": 150.0, "status": "open"},
        ]),
        ("POST", "/v1/donations"): (201, {
            "transactionId": 11, "amount": 20.0, "status": "completed", "isFunded": False,
            "sponsorship_funded_amount": 170.0, "sponsorship_goal": 200.0,
        }),
    }, token_file, token="tok-donor")

    result = CliRunner().invoke(cli, ["donate"], obj=client, input="2\n20\nbank\n")

    assert result.exit_code == 0, result.output
    assert "Amount exceeds" not in result.output
    assert api.requests[-1][2] == {"sponsorship_id": 9, "amount": 20.0, "payment_method": "bank"}


def test_donate_surfaces_ledger_errors(token_file):
    client, _ = _client({
        ("GET", "/v1/sponsorships"): (200, []),
        ("GET", "/v1/sponsorships/5"): (200, {"sponsorship": {
            "id": 5, "goal_amount": 100.0, "donated_amount": 100.0, "status": "funded",
        }, "donations": [], "stats": {}}),
        ("POST", "/v1/donations"): (400, {"error": "This sponsorship is already fully funded",
                                          "error_code": "ERR_LEDGER_FUNDED"}),
    }, token_file, token="tok-donor")

    result = CliRunner().invoke(
        cli, ["donate", "--sponsorship-id", "5", "--amount", "10", "--method", "card"], obj=client
    )
    assert result.exit_code == 1
    assert "already fully funded" in result.output


def test_history_prints_totals(token_file):
    client, _ = _client({
        ("GET", "/v1/donations/history"): (200, {
            "donations": [{"id": 1, "sponsorship_id": 2, "amount": 12.5, "payment_method": "card",
                           "status": "completed", "created_at": "2026-10-01T10:00:00",
                           "treatment_type": "Surgery", "patient_name": "Layla",
                           "goal_amount": 100.0, "donated_amount": 12.5}],
            "total_donations": 1,
            "total_amount_donated": 12.5,
        }),
    }, token_file, token="tok-donor")

    result = CliRunner().invoke(cli, ["history"], obj=client)
    assert result.exit_code == 0, result.output
    assert "Total Donations: 1" in result.output
    assert "Total Amount Donated: $12.50" in result.output


def test_end_call_sends_duration(token_file):
    client, api = _client({
        ("PATCH", "/v1/consultations/4/audio-calls/end"): (200, {
            "call_id": 8, "duration_seconds": 125, "ended_at": "2026-10-01T10:02:05",
            "consultation_status": "completed",
        }),
    }, token_file, token="tok-doc")

    result = CliRunner().invoke(cli, ["end-call", "4", "8", "--modality", "audio", "--duration", "125"], obj=client)

    assert result.exit_code == 0, result.output
    assert "ended after 2m 5s" in result.output
    assert api.requests[-1][2] == {"call_id": 8, "duration_seconds": 125}


def test_logout_clears_token_even_if_already_revoked(token_file):
    client, _ = _client({
        ("POST", "/v1/auth/logout"): (401, {"error": "Token has been revoked"}),
    }, token_file, token="tok-old")

    result = CliRunner().invoke(cli, ["logout"], obj=client)
    assert result.exit_code == 0
    assert client.token is None


def test_menu_exit_when_logged_out(token_file):
    client, _ = _client({}, token_file)
    result = CliRunner().invoke(cli, ["menu"], obj=client, input="0\n")
    assert result.exit_code == 0, result.output
    assert "Not logged in" in result.output
    assert "Goodbye" in result.output


def test_menu_runs_role_command(token_file):
    client, api = _client({
        ("GET", "/v1/auth/me"): (200, {"id": 2, "full_name": "Omar Doctor", "email": "omar@example.com",
                                       "role": "doctor", "is_active": True}),
        ("PATCH", "/v1/consultations/12/status"): (200, {"status": "success", "consultation_id": 12,
                                                         "consultation_status": "accepted"}),
    }, token_file, token="tok-doc")

    # 3) Accept consultation -> id 12, then 0) Exit
    result = CliRunner().invoke(cli, ["menu"], obj=client, input="3\n12\n0\n")

    assert result.exit_code == 0, result.output
    assert "Consultation #12 accepted" in result.output
    assert ("PATCH", "/v1/consultations/12/status", {"status": "accepted"}, "Bearer tok-doc") in api.requests


def test_unreachable_api_is_reported(token_file):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = ApiClient(BASE, token_file, transport=httpx.MockTransport(refuse))
    with pytest.raises(ApiError) as exc:
        client.get("/auth/me", auth=False)
    assert exc.value.status_code == 0
    assert "Cannot reach HealthPal API" in exc.value.message
