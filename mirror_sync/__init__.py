"""Mirror Watcher: move files off a source volume once they are safely mirrored.

Watches a source directory tree, copies every new or changed file to the
same relative path under a destination tree, verifies the copy and only
then deletes the source file and prunes source directories that became
empty.
"""

__version__ = "1.0.0"
__app_name__ = "Mirror Watcher"
