"""
Sync the local concept dictionary from the subscribed OCL source
Run this script on a schedule; each run imports the changes since the last successful one
"""

import logging
from config import get_config
from database import get_rdbms_connector
from dictionary import get_dictionary_store
from sync import perform_update

logger = logging.getLogger(__name__)


def main():
    """Main update workflow"""
    config = get_config()
    logging.basicConfig(level=getattr(logging, config.system.log_level.upper(), logging.INFO))

    print("╔" + "="*78 + "╗")
    print("║" + " "*22 + "TERMINOLOGY DICTIONARY UPDATE" + " "*27 + "║")
    print("╚" + "="*78 + "╝")

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    # Initialize connectors
    logger.info("\n🔌 Initializing database connectors...")
    rdbms_connector = get_rdbms_connector(config.rdbms)
    dictionary_store = None

    try:
        if not rdbms_connector.test_connection():
            logger.error("Failed to connect to RDBMS")
            return 1

        rdbms_connector.create_schema()
        logger.info("✅ Ledger database ready")

        dictionary_store = get_dictionary_store(config, rdbms_connector)

        result = perform_update(config, rdbms_connector, dictionary_store)

        if result["status"] == "not_configured":
            logger.info("\nNo subscription configured. Set OCL_URL to subscribe.")
            return 0
        if result["status"] == "already_running":
            logger.info("\nAnother update is in progress, nothing to do.")
            return 0

        # Display final statistics
        logger.info("\n" + "=" * 80)
        logger.info("UPDATE SUMMARY")
        logger.info("=" * 80)

        items = result.get("items", {})
        logger.info(f"\n📊 Update {result['update_id']}, updated to {result['updated_to'].isoformat()}")
        for state, count in sorted(items.items()):
            logger.info(f"   • {state}: {count}")
        logger.info(f"   Concepts in dictionary: {dictionary_store.count_concepts()}")
        logger.info(f"   Mappings in dictionary: {dictionary_store.count_mappings()}")

        if items.get("ERROR"):
            logger.warning(f"\n⚠️  {items['ERROR']} record(s) could not be imported, see the update items")

        logger.info("\n" + "=" * 80)
        logger.info("✅ UPDATE COMPLETED SUCCESSFULLY!")
        logger.info("=" * 80)

        return 0

    except Exception as e:
        logger.error(f"\n❌ Update failed: {e}", exc_info=True)
        return 1

    finally:
        if dictionary_store is not None:
            dictionary_store.close()
        rdbms_connector.close()
        logger.info("\n✅ Connections closed")


if __name__ == "__main__":
    import sys
    sys.exit(main())
