"""
Bulk export: discover a site's pages, generate JSON-LD for each and write a
path-keyed manifest for injection scripts.

Output layout:
	manifest.v1.json   {"/path": schema} written after every page
	manifest.v1.txt    same content, for hosts that refuse .json uploads
	prompts/<slug>.txt system and user prompt sent for each page
	analysis/<slug>.outline.json  structured outline (optional)
"""
import json
import os
import shutil
import tempfile
import threading
import time
import uuid
import zipfile
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from colorama import Fore, Style

from .llm import GenerationOptions, SchemaLLM, fallback_schema
from .log import ProgressCallback, ProgressLog, banner, get_logger
from .models import utcnow
from .scraper import PageScraper, ScrapeError
from .site_crawler import SiteCrawler
from .urls import manifest_path, safe_slug_from_url

logger = get_logger("export")

MANIFEST_NAME = "manifest.v1.json"

JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"


def ensure_dir(path: str) -> None:
	os.makedirs(path, exist_ok=True)


def _write_json(path: str, data: Any) -> None:
	with open(path, "w", encoding="utf-8") as f:
		json.dump(data, f, ensure_ascii=False, indent=2)


def manifest_entry(schemas: List[Dict[str, Any]]) -> Dict[str, Any]:
	"""One schema as-is, several as a single @graph document."""
	if len(schemas) == 1:
		return schemas[0]
	graph = [{k: v for k, v in s.items() if k != "@context"} for s in schemas]
	return {"@context": "https://schema.org", "@graph": graph}


def export_site(
	base_url: str,
	output_dir: str,
	crawler: Optional[SiteCrawler] = None,
	scraper: Optional[PageScraper] = None,
	llm: Optional[SchemaLLM] = None,
	max_pages: int = 500,
	rate_limit: float = 0.5,
	options: Optional[GenerationOptions] = None,
	dump_prompts: bool = True,
	save_outline: bool = False,
	progress_callback: Optional[ProgressCallback] = None,
	before_page: Optional[Callable[[str], bool]] = None,
	sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
	"""
	Crawl base_url and write the schema manifest into output_dir.

	before_page is called with each successfully scraped URL before its
	schema is generated, so pages that cannot be fetched are never charged.
	Returning False stops the export (used to stop when credits run out).
	"""
	log = ProgressLog(logger, progress_callback)
	crawler = crawler or SiteCrawler(max_urls=max_pages)
	scraper = scraper or PageScraper()
	llm = llm or SchemaLLM()
	options = options or GenerationOptions(no_truncate=True)

	ensure_dir(output_dir)
	prompts_dir = os.path.join(output_dir, "prompts")
	analysis_dir = os.path.join(output_dir, "analysis")
	if dump_prompts:
		ensure_dir(prompts_dir)
	if save_outline:
		ensure_dir(analysis_dir)

	banner("SuperSchema Export")
	log.info(f"Base: {Fore.WHITE}{base_url}{Style.RESET_ALL}")
	log.info(f"Max pages: {Fore.WHITE}{max_pages}{Style.RESET_ALL}  Rate: {Fore.WHITE}{rate_limit}s{Style.RESET_ALL}")

	manifest_file = os.path.join(output_dir, MANIFEST_NAME)
	manifest: Dict[str, Any] = {}
	pages: List[Dict[str, str]] = []
	failed: List[str] = []
	stopped_early = False

	for discovered in crawler.discover_urls(base_url):
		if len(pages) >= max_pages:
			break
		url = discovered.url
		if pages or failed:
			sleep(rate_limit)

		try:
			analysis = scraper.scrape_url(url)
		except ScrapeError as exc:
			log.warn(str(exc))
			failed.append(url)
			continue

		if before_page is not None and not before_page(url):
			log.warn("Credit balance exhausted, stopping export")
			stopped_early = True
			break

		slug = safe_slug_from_url(url)
		if dump_prompts:
			system, user = llm.build_prompt(analysis, options)
			with open(os.path.join(prompts_dir, f"{slug}.txt"), "w", encoding="utf-8") as pf:
				pf.write("=== SYSTEM ===\n" + system + "\n\n=== USER ===\n" + user)
		if save_outline:
			_write_json(os.path.join(analysis_dir, f"{slug}.outline.json"), analysis.outline)

		try:
			schemas = llm.generate_schemas(analysis, options)
		except Exception as exc:
			log.error(f"LLM error for {url}: {exc}")
			schemas = [fallback_schema(analysis.title, url)]

		path = manifest_path(url)
		manifest[path] = manifest_entry(schemas)
		# Incremental write keeps partial results if the export dies midway
		_write_json(manifest_file, manifest)
		pages.append({"url": url, "slug": slug, "title": analysis.title, "path": path})
		log.info(f"✓ [{len(pages)}/{max_pages}] Saved: {url} -> {path}")

	_write_json(manifest_file, manifest)
	manifest_txt = manifest_file.replace(".json", ".txt")
	_write_json(manifest_txt, manifest)

	log.info("─" * 60)
	log.info(f"Wrote manifest with {len(manifest)} entries: {manifest_file}")
	log.info(f"Also created .txt copy: {manifest_txt}")
	return {
		"base_url": base_url,
		"pages": pages,
		"failed": failed,
		"stopped_early": stopped_early,
		"manifest_path": manifest_file,
		"manifest_txt_path": manifest_txt,
	}


def zip_directory(src_dir: str, zip_path: str) -> str:
	with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zipf:
		for root, _dirs, files in os.walk(src_dir):
			for name in files:
				file_path = os.path.join(root, name)
				zipf.write(file_path, os.path.relpath(file_path, src_dir))
	return zip_path


def export_filename(base_url: str, now: Optional[datetime] = None) -> str:
	timestamp = (now or utcnow()).strftime("%Y%m%d_%H%M%S")
	safe_domain = base_url.replace("https://", "").replace("http://", "").replace("/", "_")[:50]
	return f"schema_{safe_domain}_{timestamp}.zip"


class ExportJobs:
	"""
	In-memory registry of background exports, polled over HTTP.

	Finished jobs older than max_age are swept whenever a new job starts.
	"""

	def __init__(
		self,
		runner: Callable[..., Dict[str, Any]] = export_site,
		max_age: float = 60 * 60,
		now: Callable[[], datetime] = utcnow,
	):
		self.runner = runner
		self.max_age = max_age
		self.now = now
		self.jobs: Dict[str, Dict[str, Any]] = {}
		self._lock = threading.Lock()

	def start(self, base_url: str, user_id: Optional[str] = None, wait: bool = False, **kwargs: Any) -> str:
		self.sweep()
		job_id = str(uuid.uuid4())
		with self._lock:
			self.jobs[job_id] = {
				"status": JOB_RUNNING,
				"progress": [],
				"base_url": base_url,
				"user_id": user_id,
				"created_at": self.now().isoformat(),
				"completed_at": None,
				"error": None,
				"zip_path": None,
				"filename": None,
				"temp_dir": None,
				"summary": None,
				"discard": False,
			}
		thread = threading.Thread(target=self._run, args=(job_id, base_url, kwargs), daemon=True)
		thread.start()
		if wait:
			thread.join()
		return job_id

	def _run(self, job_id: str, base_url: str, kwargs: Dict[str, Any]) -> None:
		job = self.jobs[job_id]

		def progress_callback(level: str, message: str) -> None:
			job["progress"].append({"type": level, "message": message, "timestamp": self.now().isoformat()})

		temp_dir = tempfile.mkdtemp(prefix="superschema_export_")
		output_dir = os.path.join(temp_dir, "output")
		try:
			summary = self.runner(base_url, output_dir, progress_callback=progress_callback, **kwargs)
			zip_path = zip_directory(output_dir, os.path.join(temp_dir, "schema_output.zip"))
			job.update({
				"status": JOB_COMPLETED,
				"zip_path": zip_path,
				"filename": export_filename(base_url),
				"temp_dir": temp_dir,
				"summary": {k: v for k, v in summary.items() if k not in ("manifest_path", "manifest_txt_path")},
			})
		except Exception as exc:
			logger.error(f"Export job {job_id} failed: {exc}")
			job.update({"status": JOB_FAILED, "error": str(exc)})
			shutil.rmtree(temp_dir, ignore_errors=True)
		finally:
			with self._lock:
				job["completed_at"] = self.now().isoformat()
				discard = job["discard"]
		if discard:
			self.cleanup(job_id)

	def get(self, job_id: str) -> Optional[Dict[str, Any]]:
		return self.jobs.get(job_id)

	def status(self, job_id: str) -> Optional[Dict[str, Any]]:
		job = self.jobs.get(job_id)
		if job is None:
			return None
		return {
			"job_id": job_id,
			"status": job["status"],
			"progress": list(job["progress"]),
			"error": job["error"],
			"summary": job["summary"],
			"created_at": job["created_at"],
			"completed_at": job["completed_at"],
		}

	def cleanup(self, job_id: str) -> None:
		job = self.jobs.pop(job_id, None)
		if job and job.get("temp_dir"):
			shutil.rmtree(job["temp_dir"], ignore_errors=True)

	def discard(self, job_id: str) -> None:
		"""Drop a job nobody will collect, now or as soon as it finishes."""
		with self._lock:
			job = self.jobs.get(job_id)
			if job is None:
				return
			if job["completed_at"] is None:
				job["discard"] = True
				return
		self.cleanup(job_id)

	def sweep(self, max_age: Optional[float] = None) -> int:
		"""Remove finished jobs older than max_age seconds along with their files."""
		cutoff = self.now() - timedelta(seconds=self.max_age if max_age is None else max_age)
		with self._lock:
			expired = [
				job_id for job_id, job in self.jobs.items()
				if job["completed_at"] and datetime.fromisoformat(job["completed_at"]) < cutoff
			]
		for job_id in expired:
			self.cleanup(job_id)
		if expired:
			logger.info(f"Swept {len(expired)} expired export jobs")
		return len(expired)
