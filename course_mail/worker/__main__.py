"""Email worker package entry point.

Allows execution of the email worker via: python -m course_mail.worker
"""

import asyncio

from course_mail.worker.processor import main

if __name__ == "__main__":
    asyncio.run(main())
