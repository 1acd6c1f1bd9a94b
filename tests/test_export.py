"""Tests for bulk export and the background export jobs."""
import json
import os
import threading
import time
import zipfile
from datetime import datetime, timedelta

from conftest import ARTICLE_SCHEMA, FakeCrawler, FakeLLM, FakeScraper
from superschema.export import (
	JOB_COMPLETED,
	JOB_FAILED,
	MANIFEST_NAME,
	ExportJobs,
	export_filename,
	export_site,
	manifest_entry,
	zip_directory,
)

ORG = {"@context": "https://schema.org", "@type": "Organization", "name": "Coffee Lab"}


def run_export(output_dir, **kwargs):
	kwargs.setdefault("crawler", FakeCrawler())
	kwargs.setdefault("scraper", FakeScraper())
	kwargs.setdefault("llm", FakeLLM())
	kwargs.setdefault("sleep", lambda seconds: None)
	return export_site("https://coffeelab.test", str(output_dir), **kwargs)


def read_manifest(output_dir):
	with open(os.path.join(str(output_dir), MANIFEST_NAME), encoding="utf-8") as f:
		return json.load(f)


def test_manifest_entry_single_and_graph():
	assert manifest_entry([ARTICLE_SCHEMA]) == ARTICLE_SCHEMA

	graph = manifest_entry([ARTICLE_SCHEMA, ORG])
	assert graph["@context"] == "https://schema.org"
	assert [item["@type"] for item in graph["@graph"]] == ["Article", "Organization"]
	assert all("@context" not in item for item in graph["@graph"])


def test_export_writes_path_keyed_manifest(tmp_path):
	summary = run_export(tmp_path, save_outline=True)

	manifest = read_manifest(tmp_path)
	assert sorted(manifest) == ["/", "/guides/brew", "/guides/espresso"]
	assert manifest["/guides/brew"] == ARTICLE_SCHEMA
	assert [p["path"] for p in summary["pages"]] == ["/", "/guides/brew", "/guides/espresso"]
	assert summary["failed"] == []
	assert summary["stopped_early"] is False

	with open(summary["manifest_txt_path"], encoding="utf-8") as f:
		assert json.load(f) == manifest

	slug = summary["pages"][1]["slug"]
	assert slug == "coffeelab-test-guides-brew"
	with open(tmp_path / "prompts" / f"{slug}.txt", encoding="utf-8") as f:
		prompt = f.read()
	assert prompt.startswith("=== SYSTEM ===\nsystem prompt")
	assert os.path.exists(tmp_path / "analysis" / f"{slug}.outline.json")


def test_export_respects_max_pages_and_rate_limit(tmp_path):
	pauses = []
	summary = run_export(tmp_path, max_pages=2, rate_limit=0.25, sleep=pauses.append, dump_prompts=False)

	assert len(summary["pages"]) == 2
	assert pauses == [0.25]
	assert not os.path.exists(tmp_path / "prompts")


def test_failed_pages_are_skipped(tmp_path):
	scraper = FakeScraper()
	scraper.broken.append("https://coffeelab.test/guides/brew")
	summary = run_export(tmp_path, scraper=scraper)

	assert summary["failed"] == ["https://coffeelab.test/guides/brew"]
	assert "/guides/brew" not in read_manifest(tmp_path)


def test_pages_that_cannot_be_fetched_are_not_charged(tmp_path):
	scraper = FakeScraper()
	scraper.broken.extend(FakeCrawler().urls)
	charged = []

	def before_page(url):
		charged.append(url)
		return True

	summary = run_export(tmp_path, scraper=scraper, before_page=before_page)

	assert summary["pages"] == []
	assert len(summary["failed"]) == 3
	assert charged == []


def test_llm_errors_fall_back_to_webpage(tmp_path):
	llm = FakeLLM()
	llm.error = RuntimeError("rate limited")
	run_export(tmp_path, llm=llm)

	entry = read_manifest(tmp_path)["/"]
	assert entry["@type"] == "WebPage"
	assert entry["url"] == "https://coffeelab.test/"


def test_before_page_can_stop_the_export(tmp_path):
	charged = []

	def before_page(url):
		if len(charged) >= 1:
			return False
		charged.append(url)
		return True

	summary = run_export(tmp_path, before_page=before_page)

	assert charged == ["https://coffeelab.test/"]
	assert summary["stopped_early"] is True
	assert list(read_manifest(tmp_path)) == ["/"]


def test_progress_callback_receives_messages(tmp_path):
	messages = []
	run_export(tmp_path, progress_callback=lambda level, message: messages.append((level, message)))

	assert any("Saved: https://coffeelab.test/guides/brew -> /guides/brew" in m for _, m in messages)
	assert messages[-1][1].startswith("Also created .txt copy")


def test_zip_directory(tmp_path):
	src = tmp_path / "out"
	(src / "prompts").mkdir(parents=True)
	(src / MANIFEST_NAME).write_text("{}", encoding="utf-8")
	(src / "prompts" / "a.txt").write_text("hi", encoding="utf-8")

	zip_path = zip_directory(str(src), str(tmp_path / "out.zip"))
	with zipfile.ZipFile(zip_path) as zf:
		assert sorted(zf.namelist()) == [MANIFEST_NAME, os.path.join("prompts", "a.txt")]


def test_export_filename():
	name = export_filename("https://coffeelab.test/shop", datetime(2024, 5, 1, 9, 30, 0))
	assert name == "schema_coffeelab.test_shop_20240501_093000.zip"


def test_jobs_complete_with_zip():
	jobs = ExportJobs()
	job_id = jobs.start(
		"https://coffeelab.test",
		user_id="user_1",
		wait=True,
		crawler=FakeCrawler(),
		scraper=FakeScraper(),
		llm=FakeLLM(),
		sleep=lambda seconds: None,
	)

	job = jobs.get(job_id)
	assert job["status"] == JOB_COMPLETED
	assert job["user_id"] == "user_1"
	assert os.path.exists(job["zip_path"])
	assert job["filename"].startswith("schema_coffeelab.test_")

	status = jobs.status(job_id)
	assert status["summary"]["pages"][0]["path"] == "/"
	assert "manifest_path" not in status["summary"]
	assert any(p["type"] == "info" for p in status["progress"])
	assert status["completed_at"] is not None

	with zipfile.ZipFile(job["zip_path"]) as zf:
		assert MANIFEST_NAME in zf.namelist()

	temp_dir = job["temp_dir"]
	jobs.cleanup(job_id)
	assert jobs.get(job_id) is None
	assert not os.path.exists(temp_dir)


def test_jobs_record_failures():
	def failing_runner(base_url, output_dir, progress_callback=None, **kwargs):
		raise RuntimeError("crawler exploded")

	jobs = ExportJobs(runner=failing_runner)
	job_id = jobs.start("https://coffeelab.test", wait=True)

	status = jobs.status(job_id)
	assert status["status"] == JOB_FAILED
	assert status["error"] == "crawler exploded"
	assert jobs.status("missing") is None



def wait_for(condition, timeout=2.0):
	deadline = time.monotonic() + timeout
	while not condition():
		if time.monotonic() >= deadline:
			return False
		time.sleep(0.01)
	return True


def test_discarded_running_job_is_removed_when_it_finishes():
	release = threading.Event()
	dirs = []

	def slow_runner(base_url, output_dir, progress_callback=None, **kwargs):
		dirs.append(os.path.dirname(output_dir))
		release.wait(2)
		return {}

	jobs = ExportJobs(runner=slow_runner)
	job_id = jobs.start("https://coffeelab.test")
	assert wait_for(lambda: dirs)

	jobs.discard(job_id)
	assert jobs.get(job_id)["discard"] is True

	release.set()
	assert wait_for(lambda: jobs.get(job_id) is None)
	assert not os.path.exists(dirs[0])


class Clock:
	def __init__(self):
		self.value = datetime(2024, 6, 1, 12, 0, 0)

	def __call__(self) -> datetime:
		return self.value


def test_sweep_removes_old_finished_jobs():
	clock = Clock()
	jobs = ExportJobs(runner=lambda base_url, output_dir, progress_callback=None, **kwargs: {}, now=clock)
	job_id = jobs.start("https://coffeelab.test", wait=True)
	temp_dir = jobs.get(job_id)["temp_dir"]

	assert jobs.sweep() == 0
	clock.value += timedelta(minutes=61)
	assert jobs.sweep() == 1
	assert jobs.get(job_id) is None
	assert not os.path.exists(temp_dir)
