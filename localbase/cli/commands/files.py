"""File commands."""

from pathlib import Path
from typing import Optional

import typer

from ..main import state
from ..output import format_bytes, print_json, print_success, print_table
from ..runtime import run, unwrap

app = typer.Typer(
    name="files",
    help="Manage files in a bucket",
    no_args_is_help=True,
)


@app.command("list")
def list_files(
    bucket: str = typer.Argument(..., help="Bucket name"),
    prefix: Optional[str] = typer.Option(None, "--prefix", "-p", help="Only paths starting with this prefix"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum number of files to return"),
    offset: int = typer.Option(0, "--offset", help="Number of files to skip"),
) -> None:
    """List files in a bucket, sorted by path."""
    files = unwrap(run(
        lambda client: client.storage.list(bucket, path_prefix=prefix, limit=limit, offset=offset)
    ))

    if state.json_output:
        print_json({"files": files, "total": len(files)})
        return
    if not files:
        print(f"No files found in bucket '{bucket}'")
        return

    print_table(
        [
            {
                "Path": f["path"],
                "Size": format_bytes(f.get("size")),
                "Type": f.get("content_type") or "",
                "Owner": f.get("owner_id") or "",
                "Created": (f.get("created_at") or "")[:19],
            }
            for f in files
        ],
        columns=["Path", "Size", "Type", "Owner", "Created"],
        title=f"Files in {bucket} (Showing: {len(files)})",
    )


@app.command("upload")
def upload_file(
    bucket: str = typer.Argument(..., help="Bucket name"),
    path: str = typer.Argument(..., help="Object path inside the bucket"),
    file: Path = typer.Argument(..., help="Local file to upload", exists=True, file_okay=True, dir_okay=False),
    content_type: Optional[str] = typer.Option(None, "--content-type", "-t", help="Defaults to a guess from the path"),
    owner: Optional[str] = typer.Option(None, "--owner", help="Owner user id"),
    upsert: bool = typer.Option(False, "--upsert", help="Overwrite an existing object"),
) -> None:
    """Upload a local file."""
    payload = file.read_bytes()
    record = unwrap(run(
        lambda client: client.storage.upload(
            bucket, path, payload, content_type=content_type, owner_id=owner, upsert=upsert
        )
    ))

    if state.json_output:
        print_json(record)
    else:
        print_success(
            f"Uploaded {record['full_path']} ({format_bytes(record.get('size'))}, {record.get('content_type')})"
        )


@app.command("download")
def download_file(
    bucket: str = typer.Argument(..., help="Bucket name"),
    path: str = typer.Argument(..., help="Object path inside the bucket"),
    output: Path = typer.Argument(..., help="Output path for the downloaded file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Overwrite without asking"),
) -> None:
    """Download an object to a local file."""
    if output.exists() and output.is_dir():
        output = output / Path(path).name
    if output.exists() and not yes:
        if not typer.confirm(f"File {output} already exists. Overwrite?"):
            print("Download cancelled")
            raise typer.Exit(0)

    obj = unwrap(run(lambda client: client.storage.download(bucket, path)))
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(obj["data"])

    if state.json_output:
        print_json({"path": str(output), "size": obj["size"], "content_type": obj["content_type"]})
    else:
        print_success(f"Downloaded to {output} ({format_bytes(obj['size'])})")


@app.command("rm")
def remove_file(
    bucket: str = typer.Argument(..., help="Bucket name"),
    path: str = typer.Argument(..., help="Object path inside the bucket"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
) -> None:
    """Delete an object and its record."""
    if not yes and not state.json_output:
        if not typer.confirm(f"Are you sure you want to delete '{bucket}/{path}'?"):
            print("Deletion cancelled")
            raise typer.Exit(0)

    removed = unwrap(run(lambda client: client.storage.remove(bucket, path)))

    if state.json_output:
        print_json({**removed, "deleted": True})
    else:
        print_success(f"Deleted {removed['bucket']}/{removed['path']}")


@app.command("url")
def public_url(
    bucket: str = typer.Argument(..., help="Bucket name"),
    path: str = typer.Argument(..., help="Object path inside the bucket"),
) -> None:
    """Print the local URL an object is served at."""
    data = unwrap(run(lambda client: client.storage.get_public_url(bucket, path)))
    if state.json_output:
        print_json(data)
    else:
        print(data["public_url"])
