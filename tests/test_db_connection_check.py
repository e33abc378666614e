from db_connection_check import main


def test_sqlite_connection_ok(tmp_path, capsys) -> None:
    assert main(f"sqlite:///{tmp_path / 'teadesk.db'}") is True
    assert "DB connection OK" in capsys.readouterr().out


def test_unreachable_database_reports_failure(capsys) -> None:
    assert main("sqlite:////nonexistent-dir/teadesk.db") is False
    assert "DB connection FAILED" in capsys.readouterr().out
