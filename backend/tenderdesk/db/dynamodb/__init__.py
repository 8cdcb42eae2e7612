"""DynamoDB plumbing behind `repositories.tenders_repo`.

- client: cached boto3 session, resource and client
- retry: botocore error mapping and backoff
- errors: `DdbError` family surfaced to the HTTP layer
- table: typed get/put/delete/update/query and transactional puts
"""
