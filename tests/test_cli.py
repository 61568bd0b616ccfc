import pytest

from src.db import dispose_database
from src.pipeline.__main__ import main, parse_arguments
from tests.conftest import MP3_BYTES


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path}/cli.db")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    yield tmp_path
    dispose_database()


def test_parse_submit():
    args = parse_arguments(
        ["submit", "--user-id", "3", "--title", "T", "--source-type", "url", "--url", "https://x/a.mp3"]
    )
    assert args.command == "submit"
    assert args.user_id == 3
    assert args.url == "https://x/a.mp3"


def test_source_required():
    with pytest.raises(SystemExit):
        parse_arguments(["submit", "--user-id", "1", "--title", "T", "--source-type", "url"])


def test_init_db(cli_env, capsys):
    assert main(["init-db"]) == 0
    assert "Database ready" in capsys.readouterr().out


def test_upload_status_delete_round(cli_env, capsys):
    path = cli_env / "episode.mp3"
    path.write_bytes(MP3_BYTES)

    assert main(["submit", "--user-id", "1", "--title", "Ep", "--source-type", "upload", "--file", str(path)]) == 0
    out = capsys.readouterr().out
    assert "Status: Completed" in out
    entry_id = out.splitlines()[0].split(": ", 1)[1]

    assert main(["status", entry_id]) == 0
    assert "Completed" in capsys.readouterr().out

    assert main(["delete", entry_id, "--user-id", "2"]) == 1
    assert main(["delete", entry_id, "--user-id", "1"]) == 0
    assert "no longer referenced" in capsys.readouterr().out


def test_check_url_new(cli_env, capsys):
    assert main(["check-url", "https://x/new.mp3", "--user-id", "1"]) == 0
    assert "New URL" in capsys.readouterr().out


def test_invalid_request_exit_code(cli_env, capsys):
    code = main(["submit", "--user-id", "1", "--title", "T", "--source-type", "youtube", "--url", "https://vimeo.com/1"])
    assert code == 1
    assert "Invalid YouTube URL" in capsys.readouterr().err
