"""
Command line entry point.

	superschema crawl --base-url https://example.com --output-dir ./output
	superschema discover example.com
	superschema score schemas.json
	superschema init-db
	superschema seed-packs
	superschema serve --port 8000
"""
import argparse
import json
import sys
from typing import List, Optional

from colorama import Fore, Style

from .config import Config, resolve_openai_settings
from .log import banner, setup_logging


def cmd_crawl(args: argparse.Namespace) -> int:
	from .export import export_site
	from .llm import GenerationOptions, SchemaLLM
	from .scraper import PageScraper
	from .site_crawler import SiteCrawler

	settings = resolve_openai_settings(args.api_key, args.model, args.config)
	if not settings["api_key"]:
		print(Fore.RED + "OpenAI API key is required. Use --api-key, OPENAI_API_KEY or a config file." + Style.RESET_ALL)
		return 2

	summary = export_site(
		base_url=args.base_url,
		output_dir=args.output_dir,
		crawler=SiteCrawler(max_urls=args.max_pages),
		scraper=PageScraper(timeout=args.timeout, use_vision=args.vision),
		llm=SchemaLLM(api_key=settings["api_key"], model=settings["model"]),
		max_pages=args.max_pages,
		rate_limit=args.rate_limit,
		options=GenerationOptions(requested_types=args.type or [], no_truncate=True),
		save_outline=args.save_outline,
	)
	print(Fore.GREEN + f"Done: {len(summary['pages'])} pages, {len(summary['failed'])} failed" + Style.RESET_ALL)
	return 0


def cmd_discover(args: argparse.Namespace) -> int:
	from .site_crawler import SiteCrawler

	crawler = SiteCrawler(max_urls=args.max_urls, max_depth=args.max_depth)
	count = 0
	for discovered in crawler.discover_urls(args.domain):
		count += 1
		if args.json:
			print(json.dumps(discovered.to_dict()))
		else:
			print(discovered.url)
	print(Fore.CYAN + f"{count} URLs discovered" + Style.RESET_ALL, file=sys.stderr)
	return 0


def cmd_score(args: argparse.Namespace) -> int:
	from .scoring import calculate_schema_score
	from .validator import validate_multiple, validation_summary

	with open(args.file, "r", encoding="utf-8") as f:
		data = json.load(f)
	schemas = data if isinstance(data, list) else [data]

	score = calculate_schema_score(schemas)
	summary = validation_summary(validate_multiple(schemas))
	if args.json:
		print(json.dumps({"score": score.to_dict(), "validation": summary}, indent=2))
		return 0

	banner(f"Score {score.overall_score}/100 (grade {score.grade})")
	for name, value in score.breakdown.items():
		print(f"  {name:<16} {value}")
	for strength in score.strengths:
		print(Fore.GREEN + f"  + {strength}" + Style.RESET_ALL)
	for suggestion in score.suggestions:
		print(Fore.YELLOW + f"  - {suggestion}" + Style.RESET_ALL)
	print(f"Validation: {summary['valid_schemas']}/{summary['total_schemas']} valid, "
		  f"{summary['total_errors']} errors, {summary['total_warnings']} warnings")
	return 0


def cmd_init_db(args: argparse.Namespace) -> int:
	from .database import DatabaseManager

	db = DatabaseManager(args.database_url)
	db.create_all()
	print(Fore.GREEN + f"Tables created in {db.engine.url.render_as_string(hide_password=True)}" + Style.RESET_ALL)
	return 0


def cmd_seed_packs(args: argparse.Namespace) -> int:
	from .credits import CreditService
	from .database import DatabaseManager

	db = DatabaseManager(args.database_url)
	db.create_all()
	created = CreditService(db).seed_default_packs()
	print(Fore.GREEN + f"Seeded {created} credit packs" + Style.RESET_ALL)
	return 0


def cmd_serve(args: argparse.Namespace) -> int:
	from .app import create_app

	app = create_app()
	app.run(host=args.host, port=args.port, debug=args.debug)
	return 0


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="superschema", description="Generate and score Schema.org JSON-LD for websites.")
	parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
	sub = parser.add_subparsers(dest="command", required=True)

	crawl = sub.add_parser("crawl", help="Crawl a site and write a schema manifest per page")
	crawl.add_argument("--base-url", required=True, help="Root URL to crawl")
	crawl.add_argument("--output-dir", default="./output", help="Directory for outputs")
	crawl.add_argument("--max-pages", type=int, default=500, help="Max pages to process")
	crawl.add_argument("--rate-limit", type=float, default=0.5, help="Seconds to sleep between requests")
	crawl.add_argument("--timeout", type=int, default=20, help="Per-request timeout in seconds")
	crawl.add_argument("--model", help="OpenAI model for schema generation")
	crawl.add_argument("--api-key", help="OpenAI API key override (will take precedence)")
	crawl.add_argument("--config", help="Path to project config JSON (default: superschema.json)")
	crawl.add_argument("--type", action="append", help="Requested schema type, repeatable")
	crawl.add_argument("--vision", action="store_true", help="Attach a page screenshot for vision models")
	crawl.add_argument("--save-outline", action="store_true", help="Save structured outline to output/analysis/<slug>.outline.json")
	crawl.set_defaults(func=cmd_crawl)

	discover = sub.add_parser("discover", help="List the URLs discovered for a domain")
	discover.add_argument("domain", help="Domain or URL to discover")
	discover.add_argument("--max-urls", type=int, default=Config.CRAWL_MAX_URLS)
	discover.add_argument("--max-depth", type=int, default=Config.CRAWL_MAX_DEPTH)
	discover.add_argument("--json", action="store_true", help="One JSON object per line")
	discover.set_defaults(func=cmd_discover)

	score = sub.add_parser("score", help="Score and validate JSON-LD from a file")
	score.add_argument("file", help="JSON file holding one schema or a list of schemas")
	score.add_argument("--json", action="store_true", help="Print the raw result as JSON")
	score.set_defaults(func=cmd_score)

	init_db = sub.add_parser("init-db", help="Create database tables")
	init_db.add_argument("--database-url", default=None)
	init_db.set_defaults(func=cmd_init_db)

	seed = sub.add_parser("seed-packs", help="Insert the default credit packs")
	seed.add_argument("--database-url", default=None)
	seed.set_defaults(func=cmd_seed_packs)

	serve = sub.add_parser("serve", help="Run the HTTP API")
	serve.add_argument("--host", default="0.0.0.0")
	serve.add_argument("--port", type=int, default=Config.PORT)
	serve.add_argument("--debug", action="store_true", default=Config.DEBUG)
	serve.set_defaults(func=cmd_serve)
	return parser


def main(argv: Optional[List[str]] = None) -> int:
	args = build_parser().parse_args(argv)
	setup_logging(args.log_level)
	return args.func(args)


if __name__ == "__main__":
	sys.exit(main())
