"""User and session commands."""

import typer

from ..main import state
from ..output import print_dict, print_json, print_success
from ..runtime import run, unwrap

app = typer.Typer(
    name="users",
    help="Sign users up, in and out",
    no_args_is_help=True,
)


@app.command("signup")
def signup(
    email: str = typer.Argument(..., help="Email address"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, confirmation_prompt=True),
) -> None:
    """Register a user."""
    data = unwrap(run(lambda client: client.auth.sign_up(email, password)))
    if state.json_output:
        print_json(data)
    else:
        user = data["user"]
        print_success(f"User created: {user['email']} ({user['id']}, {user['account_status']})")


@app.command("signin")
def signin(
    email: str = typer.Argument(..., help="Email address"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
) -> None:
    """Sign in and print the new session."""
    data = unwrap(run(lambda client: client.auth.sign_in(email, password, user_agent="localbase-cli")))
    if state.json_output:
        print_json(data)
    else:
        session = data["session"]
        print_dict(
            {"session_id": session["id"], "user_id": session["user_id"], "expires_at": session["expires_at"]},
            title=f"Signed in as {data['user']['email']}",
        )


@app.command("signout")
def signout(
    session_id: str = typer.Argument(..., help="Session id printed by signin"),
) -> None:
    """Invalidate a session."""
    unwrap(run(lambda client: client.auth.sign_out(session_id)))
    if state.json_output:
        print_json({"session_id": session_id, "signed_out": True})
    else:
        print_success(f"Session {session_id} invalidated")
