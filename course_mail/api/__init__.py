"""HTTP API for enqueueing emails and operating the queue."""
