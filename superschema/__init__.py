"""
SuperSchema: crawl a website, generate Schema.org JSON-LD per page with an LLM,
score the markup and manage credits, teams and integrations around it.
"""

__version__ = "1.0.0"
