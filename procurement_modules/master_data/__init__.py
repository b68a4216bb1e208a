"""
Master Data (``procurement_modules.master_data``).

Projects requisitions are raised against, suppliers they are placed with,
and each supplier's live catalog.  ``MasterDataService`` is the public entry
point.
"""
