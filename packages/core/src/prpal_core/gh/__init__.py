"""GitHub collaborators: fetching open pull requests, filtering them, posting reviews."""
