# Certification cache storage
# Verification results are not stored in Supabase; they live in a local
# cache (see cache.py) keyed by barcode.

"""
FileCertificationCache document layout:

{
  "certification_cache": {
    "<barcode>": {
      "data": {
        "verified": bool,
        "certifications": [Certification, ...],
        "supplement": {"name": ..., "brand": ..., "description": ...} | null
      },
      "timestamp": float   # epoch seconds at insertion
    }
  }
}

Entries older than certification_cache_ttl_hours (default 24) are ignored
and overwritten by the next live verification. Fallback results and total
authority failures are never written.
"""
