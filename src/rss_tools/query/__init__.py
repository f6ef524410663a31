"""Read-side views over stored posts: listings, digest, content and popularity."""
