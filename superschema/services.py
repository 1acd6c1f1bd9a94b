"""Service wiring shared by the Flask app and the CLI."""
from dataclasses import dataclass
from typing import Optional

from .config import Config, FeatureFlags
from .crawl_jobs import CrawlRegistry
from .credits import CreditService
from .database import DatabaseManager
from .export import ExportJobs
from .generator import SchemaGeneratorService
from .integrations.ga4 import GA4OAuth, GA4Service
from .integrations.hubspot import HubSpotCMS, HubSpotOAuth
from .library import LibraryService
from .llm import SchemaLLM
from .scraper import PageScraper
from .site_crawler import SiteCrawler
from .teams import TeamService
from .users import UserService


@dataclass
class Services:
	db: DatabaseManager
	flags: FeatureFlags
	llm: SchemaLLM
	scraper: PageScraper
	users: UserService
	credits: CreditService
	teams: TeamService
	library: LibraryService
	generator: SchemaGeneratorService
	crawls: CrawlRegistry
	exports: ExportJobs
	hubspot: HubSpotOAuth
	hubspot_cms: HubSpotCMS
	ga4_oauth: GA4OAuth
	ga4: GA4Service


def build_services(
	db: Optional[DatabaseManager] = None,
	flags: Optional[FeatureFlags] = None,
	llm: Optional[SchemaLLM] = None,
	scraper: Optional[PageScraper] = None,
	crawls: Optional[CrawlRegistry] = None,
	exports: Optional[ExportJobs] = None,
	skip_credit_check: Optional[bool] = None,
) -> Services:
	db = db or DatabaseManager(Config.DATABASE_URL)
	flags = flags or FeatureFlags()
	llm = llm or SchemaLLM()
	scraper = scraper or PageScraper()
	credits = CreditService(db, flags)
	library = LibraryService(db)
	hubspot = HubSpotOAuth(db)
	ga4_oauth = GA4OAuth(db)
	return Services(
		db=db,
		flags=flags,
		llm=llm,
		scraper=scraper,
		users=UserService(db),
		credits=credits,
		teams=TeamService(db, flags),
		library=library,
		generator=SchemaGeneratorService(
			db, scraper=scraper, llm=llm, credits=credits, library=library, flags=flags,
			skip_credit_check=skip_credit_check,
		),
		# A fresh crawler per job keeps visited sets independent
		crawls=crawls or CrawlRegistry(crawler_factory=SiteCrawler),
		exports=exports or ExportJobs(),
		hubspot=hubspot,
		hubspot_cms=HubSpotCMS(hubspot),
		ga4_oauth=ga4_oauth,
		ga4=GA4Service(db, ga4_oauth),
	)
