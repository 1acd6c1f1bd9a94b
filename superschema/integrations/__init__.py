"""Third-party integrations: HubSpot CMS and Google Analytics 4."""
