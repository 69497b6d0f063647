# Services package.
#
#   article_service  article CRUD, pagination and author enrichment
#
# Services take their collaborators (repository, author lookup, retry
# policy) as constructor arguments; the router layer builds them per
# request so ``get_db`` controls the transaction boundary.
