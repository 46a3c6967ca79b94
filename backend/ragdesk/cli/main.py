"""CLI entrypoint for ragdesk."""

from __future__ import annotations

import json
import mimetypes
import os
from pathlib import Path
from typing import Optional

import orjson
import requests
import typer

app = typer.Typer(name="ragdesk", help="ragdesk command-line interface")
chatbots_app = typer.Typer(name="chatbots", help="Manage chatbots and their knowledge")
app.add_typer(chatbots_app, name="chatbots")

DEFAULT_HOST = "http://127.0.0.1:8000"

_EXTRA_TYPES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".csv": "text/csv",
    ".json": "application/json",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("RAGDESK_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _resolve_actor(override: Optional[str]) -> str:
    actor = override or os.environ.get("RAGDESK_ACTOR")
    if not actor:
        typer.echo("An actor id is required (--actor or RAGDESK_ACTOR)", err=True)
        raise typer.Exit(code=1)
    return actor


def _request(
    method: str,
    path: str,
    host: Optional[str] = None,
    actor: Optional[str] = None,
    **kwargs,
) -> requests.Response:
    base = _resolve_host(host)
    headers = kwargs.pop("headers", {})
    if actor:
        headers["X-Actor-Id"] = actor
    resp = requests.request(method, f"{base}{path}", timeout=kwargs.pop("timeout", 60), headers=headers, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json().get("detail")
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2))


def guess_media_type(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in _EXTRA_TYPES:
        return _EXTRA_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


@app.command()
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name (defaults to the file name)"),
    media_type: Optional[str] = typer.Option(None, "--type", help="Override the detected media type"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id sent as X-Actor-Id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Upload a document and queue it for ingestion."""
    actor_id = _resolve_actor(actor)
    content_type = media_type or guess_media_type(path)
    with path.open("rb") as fh:
        files = {"file": (path.name, fh, content_type)}
        data = {"display_name": name} if name else None
        resp = _request("POST", "/documents", host=host, actor=actor_id, files=files, data=data)
    _echo_json(resp.json())


@app.command()
def status(
    document_id: Optional[str] = typer.Argument(None, help="Document id; omit to list every document"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id sent as X-Actor-Id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show processing status and progress."""
    actor_id = _resolve_actor(actor)
    path = f"/documents/{document_id}" if document_id else "/documents"
    _echo_json(_request("GET", path, host=host, actor=actor_id).json())


@app.command()
def retry(
    document_id: str = typer.Argument(..., help="Document id"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id sent as X-Actor-Id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Start a fresh ingestion attempt for a failed, stuck or pending document."""
    actor_id = _resolve_actor(actor)
    _echo_json(_request("POST", f"/documents/{document_id}/retry", host=host, actor=actor_id).json())


@app.command()
def cancel(
    document_id: str = typer.Argument(..., help="Document id"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id sent as X-Actor-Id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Abandon the in-flight attempt and restart it."""
    actor_id = _resolve_actor(actor)
    _echo_json(_request("POST", f"/documents/{document_id}/cancel", host=host, actor=actor_id).json())


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document id"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id sent as X-Actor-Id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Delete a document with its chunks."""
    actor_id = _resolve_actor(actor)
    _echo_json(_request("DELETE", f"/documents/{document_id}", host=host, actor=actor_id).json())


@chatbots_app.command("create")
def create_chatbot(
    name: str = typer.Argument(..., help="Chatbot name"),
    system_prompt: str = typer.Option("", "--prompt", help="System instructions"),
    model: Optional[str] = typer.Option(None, "--model", help="Completion model"),
    temperature: int = typer.Option(70, "--temperature", min=0, max=100, help="0-100"),
    max_tokens: int = typer.Option(2000, "--max-tokens", help="Clamped to 100-4000"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id sent as X-Actor-Id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Create a chatbot."""
    actor_id = _resolve_actor(actor)
    payload = {
        "name": name,
        "system_prompt": system_prompt,
        "model": model,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    _echo_json(_request("POST", "/chatbots", host=host, actor=actor_id, json=payload).json())


@chatbots_app.command("link")
def link_document(
    chatbot_id: str = typer.Argument(..., help="Chatbot id"),
    document_id: str = typer.Argument(..., help="Document id"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id sent as X-Actor-Id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Add a document to a chatbot's knowledge."""
    actor_id = _resolve_actor(actor)
    path = f"/chatbots/{chatbot_id}/documents/{document_id}"
    _echo_json(_request("PUT", path, host=host, actor=actor_id).json())


@chatbots_app.command("unlink")
def unlink_document(
    chatbot_id: str = typer.Argument(..., help="Chatbot id"),
    document_id: str = typer.Argument(..., help="Document id"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Actor id sent as X-Actor-Id"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Remove a document from a chatbot's knowledge."""
    actor_id = _resolve_actor(actor)
    path = f"/chatbots/{chatbot_id}/documents/{document_id}"
    _echo_json(_request("DELETE", path, host=host, actor=actor_id).json())


@app.command()
def chat(
    chatbot_id: str = typer.Argument(..., help="Chatbot id"),
    message: str = typer.Argument(..., help="User message"),
    session: Optional[str] = typer.Option(None, "--session", help="Continue an existing session"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Send one message and print the streamed reply."""
    payload = {"message": message, "session_id": session}
    resp = _request("POST", f"/chat/{chatbot_id}/stream", host=host, json=payload, stream=True, timeout=300)
    with resp:
        for line in resp.iter_lines(decode_unicode=True):
            if not line or not line.startswith("data: "):
                continue
            event = orjson.loads(line[len("data: ") :])
            kind = event.get("type")
            if kind == "metadata":
                typer.echo(f"[session {event['session_id']}]", err=True)
                for source in event.get("sources", []):
                    typer.echo(f"[source] {source['file_name']} ({source['similarity']:.3f})", err=True)
            elif kind == "text-delta":
                typer.echo(event["text"], nl=False)
            elif kind == "done":
                typer.echo("")
            elif kind == "error":
                typer.echo(f"\nError: {event.get('message')}", err=True)
                raise typer.Exit(code=1)


@app.command()
def serve(
    bind: str = typer.Option("127.0.0.1", "--bind", help="Interface to listen on"),
    port: int = typer.Option(8000, "--port", help="Port to listen on"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("ragdesk.app:app", host=bind, port=port)


if __name__ == "__main__":
    app()
