"""
HealthPal CLI - terminal client for the HealthPal API
"""
import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from healthpal.cli.client import ApiClient, ApiError, DEFAULT_API, DEFAULT_TOKEN_FILE

console = Console()

ROLES = ["patient", "doctor", "donor", "ngo"]
PAYMENT_METHODS = ["card", "bank"]


def _money(value) -> str:
    return f"${float(value or 0):,.2f}"


def _api(ctx: click.Context) -> ApiClient:
    return ctx.find_object(ApiClient)


def _fail(err: ApiError):
    raise click.ClickException(err.message)


@click.group()
@click.version_option(version="1.0.0")
@click.option('--api', envvar='HEALTHPAL_API', default=DEFAULT_API, show_default=True, help='API base URL')
@click.option('--token-file', envvar='HEALTHPAL_TOKEN_FILE', default=DEFAULT_TOKEN_FILE, help='Where the login token is kept')
@click.pass_context
def cli(ctx, api, token_file):
    """HealthPal - medical sponsorships and remote consultations"""
    if ctx.obj is None:
        ctx.obj = ApiClient(api, token_file)
        ctx.call_on_close(ctx.obj.close)


# --- Account ---

@cli.command()
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True)
@click.pass_context
def login(ctx, email, password):
    """Log in and remember the token"""
    api = _api(ctx)
    try:
        data = api.post("/auth/login", {"email": email, "password": password}, auth=False)
    except ApiError as e:
        _fail(e)
    api.save_token(data["access_token"])
    console.print(f"[green]✓ Welcome, {data['full_name']}! ({data['role']})[/green]")


@cli.command()
@click.option('--full-name', prompt='Full name')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(ROLES), prompt=True, default='patient')
@click.option('--phone', default='', prompt='Phone (optional)', show_default=False)
@click.pass_context
def register(ctx, full_name, email, password, role, phone):
    """Create an account and log in"""
    api = _api(ctx)
    payload = {"full_name": full_name, "email": email, "password": password, "role": role}
    if phone:
        payload["phone"] = phone
    try:
        data = api.post("/auth/register", payload, auth=False)
    except ApiError as e:
        _fail(e)
    api.save_token(data["access_token"])
    console.print(f"[green]✓ Registered as {data['full_name']} ({data['role']})[/green]")


@cli.command()
@click.pass_context
def logout(ctx):
    """Revoke the current token"""
    api = _api(ctx)
    try:
        api.post("/auth/logout")
    except ApiError as e:
        if e.status_code != 401:
            _fail(e)
    api.clear_token()
    console.print("[green]✓ Logged out[/green]")


@cli.command()
@click.pass_context
def whoami(ctx):
    """Show the logged-in user"""
    try:
        user = _api(ctx).get("/auth/me")
    except ApiError as e:
        _fail(e)
    console.print(Panel(
        f"Name: {user['full_name']}\nEmail: {user['email']}\n"
        f"Phone: {user.get('phone') or '-'}\nRole: {user['role']}",
        title="Profile"
    ))


# --- Sponsorships and donations ---

def _open_sponsorships(api: ApiClient):
    try:
        return api.get("/sponsorships")
    except ApiError as e:
        _fail(e)


def _sponsorship_table(items) -> Table:
    table = Table(title="Open Sponsorships")
    table.add_column("#", justify="right")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Patient")
    table.add_column("Treatment")
    table.add_column("Goal", justify="right")
    table.add_column("Raised", justify="right")
    table.add_column("Needed", justify="right", style="yellow")
    for i, s in enumerate(items, 1):
        remaining = float(s["goal_amount"]) - float(s["donated_amount"])
        table.add_row(
            str(i), str(s["id"]), s.get("patient_name") or "-", s["treatment_type"],
            _money(s["goal_amount"]), _money(s["donated_amount"]), _money(max(remaining, 0)),
        )
    return table


@cli.command()
@click.pass_context
def sponsorships(ctx):
    """List open sponsorships"""
    items = _open_sponsorships(_api(ctx))
    if not items:
        console.print("No open sponsorships.")
        return
    console.print(_sponsorship_table(items))


@cli.command('create-sponsorship')
@click.option('--treatment', prompt='Treatment type')
@click.option('--goal', type=float, prompt='Goal amount ($)')
@click.option('--description', prompt=True)
@click.pass_context
def create_sponsorship(ctx, treatment, goal, description):
    """Open a funding campaign (patients)"""
    try:
        data = _api(ctx).post("/sponsorships", {
            "treatment_type": treatment, "goal_amount": goal, "description": description,
        })
    except ApiError as e:
        _fail(e)
    console.print(f"[green]✓ Sponsorship #{data['sponsorshipId']} created[/green]")


@cli.command()
@click.option('--sponsorship-id', type=int, default=None, help='Skip the selection list')
@click.option('--amount', type=float, default=None)
@click.option('--method', type=click.Choice(PAYMENT_METHODS), default=None)
@click.pass_context
def donate(ctx, sponsorship_id, amount, method):
    """Donate to a sponsorship (donors)"""
    api = _api(ctx)
    items = _open_sponsorships(api)

    if sponsorship_id is None:
        if not items:
            console.print("No open sponsorships to donate to.")
            return
        console.print(_sponsorship_table(items))
        choice = click.prompt("Select sponsorship #", type=click.IntRange(1, len(items)))
        sponsorship = items[choice - 1]
    else:
        sponsorship = next((s for s in items if s["id"] == sponsorship_id), None)
        if sponsorship is None:
            try:
                sponsorship = api.get(f"/sponsorships/{sponsorship_id}")["sponsorship"]
            except ApiError as e:
                _fail(e)

    remaining = float(sponsorship["goal_amount"]) - float(sponsorship["donated_amount"])
    console.print(f"\n--- Donation Details ---\nRemaining to fund: {_money(max(remaining, 0))}")

    if amount is None:
        amount = click.prompt("Amount to donate ($)", type=float)
    if amount <= 0:
        raise click.ClickException("Amount must be a positive number")
    if amount > remaining > 0:
        console.print(
            f"[yellow]⚠ Amount exceeds remaining needed ({_money(remaining)}). "
            f"It will help complete the sponsorship![/yellow]"
        )
    if method is None:
        method = click.prompt("Payment method", type=click.Choice(PAYMENT_METHODS), default="card")

    console.print(f"\n⏳ Processing donation via {method}...")
    try:
        data = api.post("/donations", {
            "sponsorship_id": sponsorship["id"], "amount": amount, "payment_method": method,
        })
    except ApiError as e:
        _fail(e)

    console.print(Panel(
        f"Transaction ID: {data['transactionId']}\n"
        f"Amount: {_money(data['amount'])}\n"
        f"Payment Method: {method}\n"
        f"Status: {data['status']}\n"
        f"Sponsorship Funded: {_money(data['sponsorship_funded_amount'])}/{_money(data['sponsorship_goal'])}",
        title="[green]✓ Donation successful[/green]"
    ))
    if data["isFunded"]:
        console.print("[bold green]🎉 This donation fully funded the sponsorship![/bold green]")


@cli.command()
@click.pass_context
def history(ctx):
    """Show your donation history (donors)"""
    try:
        data = _api(ctx).get("/donations/history")
    except ApiError as e:
        _fail(e)

    if not data["donations"]:
        console.print("No donations yet.")
    else:
        table = Table(title="Donation History")
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Patient")
        table.add_column("Treatment")
        table.add_column("Amount", justify="right")
        table.add_column("Method")
        table.add_column("Date")
        for d in data["donations"]:
            table.add_row(
                str(d["id"]), d.get("patient_name") or "-", d["treatment_type"],
                _money(d["amount"]), d["payment_method"], (d.get("created_at") or "")[:10],
            )
        console.print(table)

    console.print(f"\n📊 Statistics:\n  Total Donations: {data['total_donations']}\n"
                  f"  Total Amount Donated: {_money(data['total_amount_donated'])}")


# --- Consultations and calls ---

@cli.command()
@click.option('--doctor-id', type=int, prompt='Doctor ID')
@click.option('--date', 'consultation_date', prompt='Date & time (YYYY-MM-DD HH:MM)')
@click.option('--mode', type=click.Choice(["chat", "audio", "video"]), prompt=True, default='video')
@click.option('--notes', default='', prompt='Notes (optional)', show_default=False)
@click.pass_context
def book(ctx, doctor_id, consultation_date, mode, notes):
    """Book a consultation (patients)"""
    try:
        data = _api(ctx).post("/consultations", {
            "doctor_id": doctor_id,
            "consultation_date": consultation_date.replace(" ", "T"),
            "mode": mode,
            "notes": notes or None,
        })
    except ApiError as e:
        _fail(e)
    console.print(f"[green]✓ Consultation #{data['consultationId']} booked ({data['status']})[/green]")


@cli.command()
@click.pass_context
def consultations(ctx):
    """List your consultations"""
    try:
        items = _api(ctx).get("/consultations")
    except ApiError as e:
        _fail(e)
    if not items:
        console.print("No consultations.")
        return

    table = Table(title="Consultations")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Patient")
    table.add_column("Doctor")
    table.add_column("When")
    table.add_column("Mode")
    table.add_column("Status")
    for c in items:
        table.add_row(
            str(c["id"]), c.get("patient_name") or "-", c.get("doctor_name") or "-",
            c["scheduled_time"][:16].replace("T", " "), c["mode"], c["status"],
        )
    console.print(table)


@cli.command()
@click.argument('consultation_id', type=int)
@click.pass_context
def accept(ctx, consultation_id):
    """Accept a pending consultation (doctors)"""
    try:
        _api(ctx).patch(f"/consultations/{consultation_id}/status", {"status": "accepted"})
    except ApiError as e:
        _fail(e)
    console.print(f"[green]✓ Consultation #{consultation_id} accepted[/green]")


@cli.command()
@click.argument('consultation_id', type=int)
@click.pass_context
def cancel(ctx, consultation_id):
    """Cancel a pending or accepted consultation"""
    try:
        _api(ctx).patch(f"/consultations/{consultation_id}/status", {"status": "cancelled"})
    except ApiError as e:
        _fail(e)
    console.print(f"[green]✓ Consultation #{consultation_id} cancelled[/green]")


@cli.command('start-call')
@click.argument('consultation_id', type=int)
@click.option('--modality', type=click.Choice(["video", "audio"]), default='video', show_default=True)
@click.pass_context
def start_call(ctx, consultation_id, modality):
    """Start an audio or video call"""
    try:
        data = _api(ctx).post(f"/consultations/{consultation_id}/{modality}-calls")
    except ApiError as e:
        _fail(e)
    for ended in data.get("force_ended_call_ids", []):
        console.print(f"[yellow]Previous {modality} call #{ended} was ended[/yellow]")
    console.print(f"[green]✓ {modality.title()} call #{data['callId']} started[/green]")


@cli.command('end-call')
@click.argument('consultation_id', type=int)
@click.argument('call_id', type=int)
@click.option('--modality', type=click.Choice(["video", "audio"]), default='video', show_default=True)
@click.option('--duration', type=int, default=None, help='Override duration in seconds')
@click.pass_context
def end_call(ctx, consultation_id, call_id, modality, duration):
    """End a running call"""
    payload = {"call_id": call_id}
    if duration is not None:
        payload["duration_seconds"] = duration
    try:
        data = _api(ctx).patch(f"/consultations/{consultation_id}/{modality}-calls/end", payload)
    except ApiError as e:
        _fail(e)
    minutes, seconds = divmod(data["duration_seconds"], 60)
    console.print(f"[green]✓ Call #{call_id} ended after {minutes}m {seconds}s[/green]")


# --- Interactive menu ---

MENUS = {
    None: [("Login", "login"), ("Register", "register")],
    "patient": [
        ("View profile", "whoami"), ("Book consultation", "book"), ("My consultations", "consultations"),
        ("Start call", "start-call"), ("End call", "end-call"), ("Create sponsorship", "create-sponsorship"),
        ("View sponsorships", "sponsorships"), ("Logout", "logout"),
    ],
    "doctor": [
        ("View profile", "whoami"), ("My consultations", "consultations"), ("Accept consultation", "accept"),
        ("Start call", "start-call"), ("End call", "end-call"), ("Logout", "logout"),
    ],
    "donor": [
        ("View profile", "whoami"), ("View sponsorships", "sponsorships"), ("Donate", "donate"),
        ("Donation history", "history"), ("Logout", "logout"),
    ],
    "ngo": [("View profile", "whoami"), ("View sponsorships", "sponsorships"), ("Logout", "logout")],
}


def _current_role(api: ApiClient):
    if not api.token:
        return None
    try:
        return api.get("/auth/me")["role"]
    except ApiError:
        return None


def _prompt_args(name: str) -> list:
    """Positional arguments never prompt, so the menu asks for them up front."""
    if name == "accept":
        return [str(click.prompt("Consultation ID", type=int))]
    if name in ("start-call", "end-call"):
        args = [str(click.prompt("Consultation ID", type=int))]
        if name == "end-call":
            args.append(str(click.prompt("Call ID", type=int)))
        modality = click.prompt("Modality", type=click.Choice(["video", "audio"]), default="video")
        return args + ["--modality", modality]
    return []


@cli.command()
@click.pass_context
def menu(ctx):
    """Interactive menu"""
    api = _api(ctx)
    while True:
        role = _current_role(api)
        options = MENUS.get(role, MENUS["ngo"]) if role else MENUS[None]

        console.print(Panel(
            "\n".join(f"{i}) {label}" for i, (label, _) in enumerate(options, 1)) + "\n0) Exit",
            title=f"HealthPal - {'Logged in as ' + role if role else 'Not logged in'}",
        ))
        choice = click.prompt("Choose an option", type=click.IntRange(0, len(options)))
        if choice == 0:
            console.print("Goodbye")
            return

        command = cli.get_command(ctx, options[choice - 1][1])
        try:
            with command.make_context(command.name, _prompt_args(command.name), parent=ctx) as sub_ctx:
                command.invoke(sub_ctx)
        except click.ClickException as e:
            console.print(f"[red]Error:[/red] {e.message}")


if __name__ == '__main__':
    cli()
