"""Tests for the command-line entry point."""

import json

import gitlab_user_audit
from useraudit.errors import FetchError

from tests.conftest import FakeGitLabClient, build_depth3_tree


def _factory(client):
    return lambda config: client


def test_missing_token_exits_with_config_error(monkeypatch, capsys) -> None:
    monkeypatch.delenv("GITLAB_TOKEN", raising=False)
    code = gitlab_user_audit.main(["--gid", "1"])
    assert code == gitlab_user_audit.EXIT_CONFIG_ERROR
    assert "token" in capsys.readouterr().err


def test_successful_run_prints_table_and_duration(capsys) -> None:
    client = FakeGitLabClient(build_depth3_tree())
    code = gitlab_user_audit.main(
        ["-t", "tok", "--gid", "1", "--excludedUsers", "svc1-b"],
        client_factory=_factory(client),
    )
    out, err = capsys.readouterr()
    assert code == gitlab_user_audit.EXIT_OK
    lines = out.splitlines()
    assert len(lines) == 9
    assert not any("svc1-b" in line for line in lines)
    assert "direct grants reported in" in err
    assert "Ignoring Owner grants for: svc1-b" in err


def test_skip_root_members_flag(capsys) -> None:
    client = FakeGitLabClient(build_depth3_tree())
    code = gitlab_user_audit.main(["-t", "tok", "--gid", "1", "--skip-root-members"], client_factory=_factory(client))
    out, _ = capsys.readouterr()
    assert code == 0
    assert len(out.splitlines()) == 8


def test_out_json_writes_report(tmp_path, capsys) -> None:
    client = FakeGitLabClient(build_depth3_tree())
    path = tmp_path / "audit.json"
    code = gitlab_user_audit.main(["-t", "tok", "--gid", "1", "--out-json", str(path)], client_factory=_factory(client))
    capsys.readouterr()
    assert code == 0
    report = json.loads(path.read_text(encoding="utf-8"))
    assert report["root"]["path"] == "acme"
    assert report["summary"]["total_records"] == 10


def test_unwritable_out_json_exits_cleanly(tmp_path, capsys) -> None:
    """A report path that cannot be written gives a [-] line and a non-zero exit, not a traceback."""
    client = FakeGitLabClient(build_depth3_tree())
    path = tmp_path / "missing-dir" / "audit.json"
    code = gitlab_user_audit.main(["-t", "tok", "--gid", "1", "--out-json", str(path)], client_factory=_factory(client))
    out, err = capsys.readouterr()
    assert code == gitlab_user_audit.EXIT_WRITE_ERROR
    assert len(out.splitlines()) == 10
    assert "Unable to write JSON report" in err
    assert not path.exists()


def test_unknown_root_group_exits_with_fetch_error(capsys) -> None:
    client = FakeGitLabClient(build_depth3_tree())
    code = gitlab_user_audit.main(["-t", "tok", "--gid", "999"], client_factory=_factory(client))
    assert code == gitlab_user_audit.EXIT_FETCH_ERROR
    assert "Unable to fetch group 999" in capsys.readouterr().err


def test_fetch_error_during_walk_exits_non_zero(capsys) -> None:
    client = FakeGitLabClient(build_depth3_tree())
    client.fail_on[("list_subgroups", 11)] = FetchError("500 Internal Server Error", status=500)
    code = gitlab_user_audit.main(["-t", "tok", "--gid", "1"], client_factory=_factory(client))
    assert code == gitlab_user_audit.EXIT_FETCH_ERROR
    assert "500 Internal Server Error" in capsys.readouterr().err


def test_parser_accepts_repeated_exclusions() -> None:
    args = gitlab_user_audit.build_parser().parse_args(
        ["--gitlabToken", "t", "--gid", "1", "--excludedUsers", "a,b", "--excluded-users", "c"]
    )
    config = gitlab_user_audit.config_from_args(args)
    assert config.excluded_users == ("a", "b", "c")
