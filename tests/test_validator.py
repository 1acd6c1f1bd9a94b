"""Tests for JSON-LD structural validation."""
from datetime import datetime

import pytest

from conftest import ARTICLE_SCHEMA
from superschema.validator import parse_date, validate_multiple, validate_schema, validation_summary


def fields(issues):
	return [issue.field for issue in issues]


def test_non_object_is_invalid():
	result = validate_schema(["not", "a", "dict"])

	assert not result.is_valid
	assert result.errors[0].message == "Schema must be a valid object"


def test_context_and_type_are_required():
	result = validate_schema({"name": "x"})

	assert not result.is_valid
	assert fields(result.errors) == ["@context", "@type"]
	assert result.schema is None


def test_type_must_be_a_string():
	result = validate_schema({"@context": "https://schema.org", "@type": ["Article"]})
	assert "@type must be a string" in [e.message for e in result.errors]


def test_unknown_type_and_context_only_warn():
	result = validate_schema({"@context": "https://example.org", "@type": "SoftwareApplication", "name": "App"})

	assert result.is_valid
	assert "@context" in fields(result.warnings)
	assert "@type" in fields(result.warnings)


def test_article_without_image_warns():
	result = validate_schema(ARTICLE_SCHEMA)

	assert result.is_valid
	assert result.schema == ARTICLE_SCHEMA
	assert fields(result.warnings) == ["image"]


def test_format_warnings():
	result = validate_schema({
		"@context": "https://schema.org",
		"@type": "Organization",
		"name": "Coffee Lab",
		"url": "coffeelab.test",
		"email": "not-an-email",
		"address": "1 Bean St",
	})

	warned = fields(result.warnings)
	assert "url" in warned
	assert "email" in warned
	assert "contact" not in warned


def test_business_without_contact_warns():
	result = validate_schema({"@context": "https://schema.org", "@type": "LocalBusiness", "name": "Cafe"})
	assert {"address", "contact"} <= set(fields(result.warnings))


def test_event_end_before_start_is_an_error():
	result = validate_schema({
		"@context": "https://schema.org",
		"@type": "Event",
		"name": "Cupping",
		"location": "Lab",
		"startDate": "2024-05-02T10:00:00Z",
		"endDate": "2024-05-01T10:00:00Z",
	})

	assert not result.is_valid
	assert fields(result.errors) == ["endDate"]


def test_rating_value_must_be_numeric():
	result = validate_schema({
		"@context": "https://schema.org",
		"@type": "Product",
		"name": "Mug",
		"aggregateRating": {"@type": "AggregateRating", "ratingValue": "five"},
	})
	assert "aggregateRating.ratingValue" in fields(result.errors)


def test_nested_objects_are_checked_with_paths():
	result = validate_schema({
		"@context": "https://schema.org",
		"@type": "Article",
		"headline": "x",
		"publisher": {"@type": "Organization", "name": "Lab", "url": "bad"},
	})

	paths = [w.path for w in result.warnings if w.path]
	assert "publisher.url" in paths
	assert "publisher.address" in paths


def test_parse_date():
	assert parse_date("2024-03-05") is not None
	assert parse_date("2024-03-05T10:00:00Z") is not None
	assert parse_date("yesterday") is None
	assert parse_date(20240305) is None


@pytest.mark.parametrize("text", [
	"March 5, 2024",
	"Mar 5, 2024",
	"5 March 2024",
	"2024/03/05",
	"03/05/2024",
	"Tue, 05 Mar 2024 00:00:00 GMT",
])
def test_parse_date_accepts_written_dates(text):
	assert parse_date(text) == datetime(2024, 3, 5)


def test_parse_date_normalizes_offsets_to_utc():
	assert parse_date("2024-03-05T10:00:00+02:00") == datetime(2024, 3, 5, 8, 0, 0)
	assert parse_date("2024-03-05T10:00:00Z") == datetime(2024, 3, 5, 10, 0, 0)


def test_event_with_written_dates_is_valid():
	result = validate_schema({
		"@context": "https://schema.org",
		"@type": "Event",
		"name": "Cupping night",
		"location": {"@type": "Place", "name": "Coffee Lab"},
		"startDate": "March 5, 2024",
		"endDate": "March 6, 2024",
	})

	assert result.is_valid


def test_validation_summary():
	results = validate_multiple([ARTICLE_SCHEMA, {"@type": "WebPage"}])
	summary = validation_summary(results)

	assert summary["total_schemas"] == 2
	assert summary["valid_schemas"] == 1
	assert summary["total_errors"] == 1
	assert summary["error_rate"] == 0.5
	assert validation_summary([])["error_rate"] == 0


def test_result_to_dict():
	data = validate_schema({"@type": "WebPage"}).to_dict()
	assert data == {
		"is_valid": False,
		"errors": [{"field": "@context", "message": "@context is required for JSON-LD", "severity": "error"}],
		"warnings": [],
	}
