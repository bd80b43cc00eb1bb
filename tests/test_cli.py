import pytest

from storefront.storage import SnapshotStorage, get_storage

from tests.conftest import TEST_ROUNDS


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestStoreCommands:
    def test_init_reports_setup_needed(self, runner):
        result = runner.invoke(args=["store", "init"])

        assert result.exit_code == 0, result.output
        assert "Schema ready" in result.output
        assert "No users yet" in result.output

    def test_migrate_missing_file_is_a_no_op(self, runner, tmp_path):
        result = runner.invoke(args=["store", "migrate", "--source", str(tmp_path / "absent.json")])

        assert result.exit_code == 0, result.output
        assert "No snapshot found" in result.output

    def test_migrate_unreadable_file_fails(self, runner, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{oops", encoding="utf-8")

        result = runner.invoke(args=["store", "migrate", "--source", str(path)])

        assert result.exit_code != 0
        assert "Could not read snapshot" in result.output

    def test_migrate_snapshot_file(self, runner, tmp_path):
        path = tmp_path / "data.json"
        SnapshotStorage(path, bcrypt_rounds=TEST_ROUNDS)

        result = runner.invoke(args=["store", "migrate", "--source", str(path)])

        assert result.exit_code == 0, result.output
        assert "Migration complete" in result.output
        assert len(get_storage().list_products()) == 2

        again = runner.invoke(args=["store", "migrate", "--source", str(path)])
        assert again.exit_code == 0, again.output
        assert "products     inserted=0" in again.output

    def test_migrate_leaves_legacy_source_untouched(self, runner, tmp_path):
        path = tmp_path / "legacy.json"
        path.write_text(
            '{"users": [{"id": 1, "username": "owner", "password": "pw", "role": "Super Admin"}]}',
            encoding="utf-8",
        )
        original = path.read_bytes()

        result = runner.invoke(args=["store", "migrate", "--source", str(path)])

        assert result.exit_code == 0, result.output
        assert path.read_bytes() == original
        assert get_storage().authenticate("owner", "pw") is not None

    def test_stats(self, runner):
        result = runner.invoke(args=["store", "stats"])

        assert result.exit_code == 0, result.output
        assert "total_orders" in result.output


class TestUserCommands:
    def test_create_and_list(self, runner):
        created = runner.invoke(args=[
            "users", "create", "--username", "ops", "--password", "pw", "--role", "Admin",
        ])
        assert created.exit_code == 0, created.output
        assert "Created user: ops" in created.output

        listed = runner.invoke(args=["users", "list"])
        assert listed.exit_code == 0, listed.output
        assert "ops" in listed.output
        assert "Admin" in listed.output

    def test_create_duplicate_fails(self, runner):
        runner.invoke(args=["users", "create", "--username", "ops", "--password", "pw"])

        result = runner.invoke(args=["users", "create", "--username", "OPS", "--password", "pw"])

        assert result.exit_code != 0
        assert "Username already taken" in result.output

    def test_list_empty(self, runner):
        result = runner.invoke(args=["users", "list"])
        assert "No users found." in result.output


class TestLogCommands:
    def test_tail(self, runner):
        get_storage().append_log("Manual Check", details="from test", actor="ops")

        result = runner.invoke(args=["logs", "tail", "--limit", "1"])

        assert result.exit_code == 0, result.output
        assert "Manual Check" in result.output
        assert "System Init" not in result.output
