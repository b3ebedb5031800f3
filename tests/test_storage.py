import sqlite3
from nameban_telegram import storage


def test_db_file_created(tmp_path):
    db = tmp_path / "test_create.db"
    assert not db.exists()
    storage.init_db(str(db))
    assert db.exists()
    # Ensure tables exist
    conn = sqlite3.connect(str(db))
    cur = conn.cursor()
    cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name IN ('patterns','hits','audit')")
    rows = cur.fetchall()
    assert len(rows) == 3
    conn.close()


def test_save_and_load_patterns(tmp_path):
    db = str(tmp_path / "test.db")
    storage.init_db(db)
    assert storage.load_patterns(db) == {}
    storage.save_patterns(1, ["spam", "/^evil.*$/i", "*bad*"], db)
    storage.save_patterns(2, ["x"], db)
    assert storage.load_patterns(db) == {1: ["spam", "/^evil.*$/i", "*bad*"], 2: ["x"]}
    # saving replaces the whole list of that group only
    storage.save_patterns(1, ["*bad*"], db)
    assert storage.load_patterns(db) == {1: ["*bad*"], 2: ["x"]}
    storage.save_patterns(2, [], db)
    assert storage.load_patterns(db) == {1: ["*bad*"]}


def test_hit_counters(tmp_path):
    db = str(tmp_path / "test_hits.db")
    storage.init_db(db)
    assert storage.record_hit(123, "abc", db) == 1
    assert storage.record_hit(123, "abc", db) == 2
    storage.record_hit(123, "def", db)
    storage.record_hit(456, "abc", db)
    assert storage.get_hit_stats(123, db) == [("abc", 2), ("def", 1)]
    assert storage.get_hit_stats(456, db) == [("abc", 1)]
    assert storage.get_hit_stats(789, db) == []


def test_audit_log_created(tmp_path):
    db = tmp_path / "test_audit.db"
    storage.init_db(str(db))
    storage.log_action("ban", 10, None, details="pattern=spam (join)", chat_id=5, db_path=str(db))
    storage.log_action("add_filter", None, 99, details="spam", chat_id=5, db_path=str(db))
    rows = storage.get_audit(5, db_path=str(db))
    assert [r[1] for r in rows] == ["add_filter", "ban"]
    assert rows[1][2] == 10
    assert rows[1][5] == "pattern=spam (join)"
    assert rows[0][3] == 99
    assert storage.get_audit(6, db_path=str(db)) == []
