import copy

from conftest import make_lead, synced_at

from services.embed_cluster.text_builder import (
    build_embedding_text,
    build_metadata,
    strip_html,
    truncate_words,
)


def test_sections_in_fixed_order():
    lead = make_lead(
        1,
        contact_name="Jordan Lee",
        function="Facilities Manager",
        specification_id=[4, "Acoustic Panels"],
        lead_source_id=[9, "Trade Show"],
        description="<p>New library fit-out</p>",
    )
    text = build_embedding_text(lead).text
    lines = [line.split(":")[0] for line in text.splitlines()]

    assert lines == [
        "Opportunity",
        "Partner",
        "Contact",
        "Email",
        "Sector",
        "Specification",
        "Location",
        "Salesperson",
        "Lead Source",
        "Revenue",
        "Status",
        "Description",
    ]


def test_empty_sections_are_omitted():
    lead = make_lead(2, email_from=False, sector=False, city=False, state_id=False, expected_revenue=0)
    text = build_embedding_text(lead).text

    assert "Email" not in text
    assert "Sector" not in text
    assert "Location" not in text
    assert "Revenue" not in text
    assert "Not specified" not in text


def test_home_country_is_dropped_from_location():
    text = build_embedding_text(make_lead(3)).text
    assert "Location: Sydney, New South Wales" in text
    assert "Australia" not in text

    text = build_embedding_text(make_lead(3, country_id=[21, "New Zealand"])).text
    assert "New Zealand" in text


def test_status_won_from_stage_name():
    lead = make_lead(4, stage_id=[8, "Signed OC"])
    assert "Status: Won" in build_embedding_text(lead).text


def test_status_won_from_won_status_field():
    lead = make_lead(5, won_status="won", lost_reason_id=[2, "Price"])
    text = build_embedding_text(lead).text
    assert "Status: Won" in text
    assert "Lost" not in text


def test_status_lost_with_reason():
    lead = make_lead(6, active=False, lost_reason_id=[2, "Too expensive"])
    assert "Status: Lost - Too expensive" in build_embedding_text(lead).text


def test_status_active_by_default():
    assert "Status: Active" in build_embedding_text(make_lead(7)).text


def test_description_truncation_sets_flag():
    lead = make_lead(8, description=" ".join(f"word{i}" for i in range(50)))
    built = build_embedding_text(lead, max_description_words=10)

    assert built.truncated is True
    description = [line for line in built.text.splitlines() if line.startswith("Description:")][0]
    assert description == "Description: " + " ".join(f"word{i}" for i in range(10)) + "..."


def test_design_truncation_does_not_set_flag():
    lead = make_lead(9, design=" ".join(["panel"] * 400), description="short")
    built = build_embedding_text(lead)

    assert built.truncated is False
    assert "Design: " in built.text
    assert built.text.count("panel") == 300


def test_builder_is_pure():
    lead = make_lead(10, description="<b>Gym &amp; hall</b>")
    original = copy.deepcopy(lead)

    first = build_embedding_text(lead)
    second = build_embedding_text(lead)

    assert first == second
    assert lead == original
    assert "Description: Gym & hall" in first.text


def test_metadata_agrees_with_status_line():
    lead = make_lead(11, active=False, lost_reason_id=[2, "Timing"], expected_revenue=55000)
    built = build_embedding_text(lead)
    metadata = build_metadata(lead, built.text, built.truncated, 3, synced_at())

    assert metadata.is_lost is True
    assert metadata.is_won is False
    assert metadata.is_active is False
    assert metadata.lost_reason_name == "Timing"
    assert metadata.embedding_text == built.text
    assert metadata.sync_version == 3
    assert metadata.expected_value == 55000
    assert metadata.region_name == "New South Wales"


def test_won_lead_drops_lost_reason_from_metadata():
    lead = make_lead(12, stage_id=[9, "Invoiced"], lost_reason_id=[2, "Price"])
    built = build_embedding_text(lead)
    metadata = build_metadata(lead, built.text, built.truncated, 1, synced_at())

    assert metadata.is_won is True
    assert metadata.is_lost is False
    assert metadata.lost_reason_id is None


def test_strip_html_and_truncate_helpers():
    assert strip_html("<div>Hello<br/>world&nbsp;!</div>") == "Hello world !"
    assert strip_html(False) == ""
    assert truncate_words("a b c", 5) == ("a b c", False)
    assert truncate_words("a b c d", 2) == ("a b...", True)
