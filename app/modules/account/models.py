# Supabase table: profiles (account settings live in profiles.metadata)
# Actual operations are handled via Supabase SDK in service.py and credits.py

"""
profiles.metadata layout:
- notification_preferences: {emailNotifications, agentAlerts, workflowAlerts,
  weeklyReport, marketingEmails, updated_at}
- billing: {paymentMethods: [{id: "card_<ms>", ..., createdAt}], billingHistory: [...]}
- subscription: {planId, previousPlan, upgradedAt, status, cancelledAt, effectiveDate}

profiles.api_credits is the prepaid balance consumed by chats that run on the
platform OpenAI key and by public webhook invocations.
"""
