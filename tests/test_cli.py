"""Tests for the command line interface."""
import json

import pytest

from conftest import ARTICLE_SCHEMA
from superschema import cli
from superschema.site_crawler import DiscoveredUrl


@pytest.fixture
def schema_file(tmp_path):
	path = tmp_path / "schemas.json"
	path.write_text(json.dumps([ARTICLE_SCHEMA]), encoding="utf-8")
	return str(path)


def test_parser_requires_a_command():
	with pytest.raises(SystemExit):
		cli.build_parser().parse_args([])


def test_parser_crawl_defaults():
	args = cli.build_parser().parse_args(["crawl", "--base-url", "https://coffeelab.test", "--type", "Article", "--type", "FAQPage"])

	assert args.output_dir == "./output"
	assert args.max_pages == 500
	assert args.rate_limit == 0.5
	assert args.type == ["Article", "FAQPage"]
	assert args.func is cli.cmd_crawl


def test_score_json(schema_file, capsys):
	assert cli.main(["score", schema_file, "--json"]) == 0

	result = json.loads(capsys.readouterr().out)
	assert result["score"]["overall_score"] == 58
	assert result["validation"]["valid_schemas"] == 1


def test_score_report(tmp_path, capsys):
	path = tmp_path / "single.json"
	path.write_text(json.dumps(ARTICLE_SCHEMA), encoding="utf-8")

	assert cli.main(["score", str(path)]) == 0
	out = capsys.readouterr().out
	assert "Score 58/100" in out
	assert "Validation: 1/1 valid" in out


def test_crawl_requires_api_key(monkeypatch, tmp_path, capsys):
	monkeypatch.delenv("OPENAI_API_KEY", raising=False)
	monkeypatch.setattr("superschema.config.CONFIG_FILE", str(tmp_path / "missing.json"))

	code = cli.main(["crawl", "--base-url", "https://coffeelab.test", "--config", str(tmp_path / "none.json")])

	assert code == 2
	assert "OpenAI API key is required" in capsys.readouterr().out


def test_discover_prints_urls(monkeypatch, capsys):
	class StubCrawler:
		def __init__(self, max_urls, max_depth):
			self.max_urls = max_urls

		def discover_urls(self, domain):
			yield DiscoveredUrl(url=f"https://{domain}/", path="/", depth=0)
			yield DiscoveredUrl(url=f"https://{domain}/about", path="/about", depth=1)

	monkeypatch.setattr("superschema.site_crawler.SiteCrawler", StubCrawler)

	assert cli.main(["discover", "coffeelab.test", "--json"]) == 0
	captured = capsys.readouterr()
	lines = [json.loads(line) for line in captured.out.splitlines()]
	assert [line["path"] for line in lines] == ["/", "/about"]
	assert "2 URLs discovered" in captured.err


def test_init_db_and_seed_packs(tmp_path, capsys):
	url = f"sqlite:///{tmp_path / 'cli.db'}"

	assert cli.main(["init-db", "--database-url", url]) == 0
	assert "Tables created" in capsys.readouterr().out

	assert cli.main(["seed-packs", "--database-url", url]) == 0
	assert "Seeded 5 credit packs" in capsys.readouterr().out
	cli.main(["seed-packs", "--database-url", url])
	assert "Seeded 0 credit packs" in capsys.readouterr().out
