from promonex.pipeline import legal_service, workflow_temp
from conftest import SHOP


def test_state_is_reduced_to_ui_position():
    assert workflow_temp.normalize_state(None) == {"activeTab": "scene1", "showingFinal": False}
    assert workflow_temp.normalize_state({"activeTab": "scene9", "showingFinal": "yes"}) == {
        "activeTab": "scene1",
        "showingFinal": True,
    }


def test_save_is_upsert_per_shop_and_product(fake_db):
    workflow_temp.save_workflow_temp(SHOP, "p-1", {"activeTab": "scene2"})
    workflow_temp.save_workflow_temp(SHOP, "p-1", {"activeTab": "scene3", "showingFinal": True})
    workflow_temp.save_workflow_temp(SHOP, "p-2", {"activeTab": "scene2"})

    assert len(fake_db.rows("promo_workflow_temp")) == 2
    assert workflow_temp.get_workflow_temp(SHOP, "p-1") == {"activeTab": "scene3", "showingFinal": True}
    assert workflow_temp.get_workflow_temp("other.myshopify.com", "p-1") is None

    workflow_temp.delete_workflow_temp(SHOP, "p-1")
    assert workflow_temp.get_workflow_temp(SHOP, "p-1") is None
    assert workflow_temp.get_workflow_temp(SHOP, "p-2") is not None


def test_legal_status_tracks_terms_version(fake_db):
    assert legal_service.get_legal_status(SHOP) == {
        "agreed": False,
        "currentTermsVersion": "1.0",
        "agreedVersion": None,
        "isUpdatedTerms": False,
    }

    legal_service.record_legal_agreement(SHOP)
    assert legal_service.get_legal_status(SHOP)["agreed"] is True

    fake_db.rows("legal_agreements")[0]["terms_version"] = "0.9"
    status = legal_service.get_legal_status(SHOP)
    assert status["agreed"] is False
    assert status["isUpdatedTerms"] is True
    assert status["agreedVersion"] == "0.9"
