# Clients for services this one depends on but does not own.
#
#   outcomes     tagged result of a single author lookup
#   user_client  httpx client for the user service
#
# Client methods classify failures into outcome values instead of
# raising, so callers decide per call site whether to retry, degrade,
# or fail the request.
