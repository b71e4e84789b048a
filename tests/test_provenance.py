from pathlib import Path

import pandas as pd

from phylosensi.provenance import file_digest, frame_digest, now_utc_iso, payload_digest


def test_payload_digest_ignores_key_order() -> None:
    assert payload_digest({"a": 1, "b": [1.5, 2]}) == payload_digest({"b": [1.5, 2], "a": 1})
    assert payload_digest({"a": 1}) != payload_digest({"a": 2})


def test_frame_digest_is_row_order_sensitive() -> None:
    frame = pd.DataFrame({"y": [1.0, 2.0]}, index=["a", "b"])
    assert frame_digest(frame) == frame_digest(frame.copy())
    assert frame_digest(frame) != frame_digest(frame.iloc[::-1])


def test_file_digest(tmp_path: Path) -> None:
    path = tmp_path / "tree.nwk"
    path.write_text("(a:1,b:1);\n", encoding="utf-8")
    assert len(file_digest(path)) == 64


def test_fixed_timestamp(monkeypatch) -> None:
    monkeypatch.setenv("PHYLOSENSI_FIXED_TIMESTAMP_UTC", "2001-02-03T04:05:06+00:00")
    assert now_utc_iso() == "2001-02-03T04:05:06+00:00"
