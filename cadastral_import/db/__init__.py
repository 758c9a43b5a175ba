"""Storage layer: psycopg2 batch insert and entity stores."""
