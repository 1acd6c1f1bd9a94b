"""Tests for schema quality scoring."""
import json

import pytest

from conftest import ARTICLE_SCHEMA
from superschema.scoring import (
	calculate_schema_score,
	extract_schema_type,
	get_raw_schema_type,
	grade_for,
	html_script_tags,
	round_half_up,
)


def test_empty_input_scores_zero():
	score = calculate_schema_score([])

	assert score.overall_score == 0
	assert score.grade == "F"
	assert score.breakdown == {"required": 0, "recommended": 0, "advanced_aeo": 0, "content_quality": 0}


def test_minimal_schema_scores_only_required():
	score = calculate_schema_score([{"@context": "https://schema.org", "@type": "Thing", "name": "Bean"}])

	assert score.breakdown == {"required": 100, "recommended": 0, "advanced_aeo": 0, "content_quality": 0}
	assert score.overall_score == 35
	assert "All required properties are present" in score.strengths
	assert len(score.suggestions) == 7


def test_article_breakdown():
	score = calculate_schema_score([ARTICLE_SCHEMA])

	assert score.breakdown == {"required": 100, "recommended": 57, "advanced_aeo": 8, "content_quality": 45}
	assert score.overall_score == 58
	assert score.grade == "F"
	assert 'Add "image" to strengthen the schema' in score.suggestions
	assert score.strengths[-1] == "Uses answer engine features: keywords"


def test_only_first_schema_is_scored():
	first = {"@type": "WebPage"}
	score = calculate_schema_score([first, ARTICLE_SCHEMA])

	assert score.breakdown["required"] == 33
	assert score.action_items[0].startswith("Add the missing required properties")


def test_rich_schema_scores_high():
	schema = dict(
		ARTICLE_SCHEMA,
		image={"@type": "ImageObject", "url": "https://coffeelab.test/i.jpg"},
		publisher={"@type": "Organization", "name": "Coffee Lab", "logo": "https://coffeelab.test/logo.png"},
		dateModified="2024-03-06",
		author={"@type": "Person", "name": "Ada Brewer", "sameAs": ["https://coffeelab.test/ada"]},
		about={"@type": "Thing", "name": "Coffee"},
		mentions=[{"@type": "Thing", "name": "Kettle"}],
		sameAs=["https://coffeelab.test"],
		speakable={"@type": "SpeakableSpecification"},
		inLanguage="en",
		articleSection="Guides",
		wordCount=1200,
		isPartOf={"@type": "WebSite"},
		mainEntityOfPage="https://coffeelab.test/guides/brew",
	)
	score = calculate_schema_score([schema])

	assert score.breakdown["recommended"] == 100
	assert score.breakdown["content_quality"] == 100
	assert score.overall_score >= 90
	assert score.grade == "A"


@pytest.mark.parametrize("value,grade", [(95, "A"), (90, "A"), (85, "B"), (70, "C"), (60, "D"), (59, "F")])
def test_grade_for(value, grade):
	assert grade_for(value) == grade


def test_round_half_up():
	assert round_half_up(2.5) == 3
	assert round_half_up(0.5) == 1
	assert round_half_up(57.14) == 57


def test_schema_type_names():
	assert get_raw_schema_type([{"@type": ["BlogPosting", "Article"]}]) == "BlogPosting"
	assert extract_schema_type([{"@type": "BlogPosting"}]) == "Article"
	assert extract_schema_type({"@type": "LocalBusiness"}) == "Local Business"
	assert extract_schema_type({"@type": "SoftwareApplication"}) == "SoftwareApplication"
	assert extract_schema_type([]) == "Auto"


def test_html_script_tags():
	tags = html_script_tags([{"@type": "A"}, {"@type": "B", "name": "Café"}])

	assert tags.count('<script type="application/ld+json">') == 2
	assert "Café" in tags
	body = tags.split("\n\n")[1].split("\n", 1)[1].rsplit("\n", 1)[0]
	assert json.loads(body) == {"@type": "B", "name": "Café"}
