from __future__ import annotations

import json

from fulfillment.cli import main


def test_init_db_and_verify(capsys):
    assert main(["init-db"]) == 0

    assert main(["verify"]) == 0
    results = json.loads(capsys.readouterr().out)
    assert [item["rule"] for item in results] == ["balance_chain", "order_totals", "load_bindings"]
    assert all(item["passed"] for item in results)
