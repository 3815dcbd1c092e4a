"""Tests for the snapshot fetcher script."""

import json

from scripts.fetch_sankhya import write_snapshot


def test_write_snapshot(tmp_path, sample_analysis):
    path = write_snapshot(sample_analysis, user_id=12, out_dir=tmp_path)

    assert path.name == "sankhya_analysis_12_2024-01-01_2024-03-31.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert len(data["leads"]) == 2
    assert data["filtro"] == {"dataInicio": "2024-01-01", "dataFim": "2024-03-31"}
    assert list(tmp_path.glob("*.tmp")) == []
