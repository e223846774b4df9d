from datetime import datetime

import pytest

from pantry.tasks import generate_monthly_report


@pytest.mark.asyncio
async def test_generate_monthly_report_task(backend, member):
    items = await backend.table("items").insert({"name": "Arroz", "quantity": 10, "unit": "kg"}).execute()
    arroz = items.data[0]
    await backend.table("withdrawals").insert([
        {"item_id": arroz["id"], "user_id": member.id, "quantity": 2, "withdrawn_at": datetime(2024, 3, 4)},
        {"item_id": None, "user_id": member.id, "quantity": 1, "withdrawn_at": datetime(2024, 3, 5)},
        {"item_id": arroz["id"], "user_id": member.id, "quantity": 7, "withdrawn_at": datetime(2024, 5, 1)},
    ]).execute()

    result = generate_monthly_report.apply(args=["2024-03"]).get()

    assert result["year_month"] == "2024-03"
    assert result["month"] == "Março 2024"
    assert result["total_withdrawals"] == 2
    assert result["total_quantity"] == 3
    assert result["unique_users"] == 1
    assert result["average_per_user"] == 2.0
    assert result["top_items"] == [
        {"item_name": "Arroz", "total_quantity": 2.0, "withdrawal_count": 1},
        {"item_name": "Item desconhecido", "total_quantity": 1.0, "withdrawal_count": 1},
    ]


def test_generate_monthly_report_rejects_bad_month():
    with pytest.raises(Exception):
        generate_monthly_report.apply(args=["not-a-month"]).get()
