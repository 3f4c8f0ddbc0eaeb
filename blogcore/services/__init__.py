# Services package.
#
#   consistency       write ordering across the database and one secondary
#                     store (search index or bucket)
#   post_query        paginated listing and search of posts
#   post_service      post writes + search index rebuild
#   file_service      avatars and private files (two-phase with S3)
#   user_service      User records
#   category_service  Category CRUD
#
# All service functions accept an AsyncSession as their first argument,
# followed by the secondary-store adapter they need, so the router layer
# owns both the session and the adapter instances.
