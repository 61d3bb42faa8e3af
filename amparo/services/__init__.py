"""
Services for Amparo.

The realtime path:
    - RiskClassifier: keyword fast path plus model-assisted risk assessment
    - ContextAssembler: decrypted per-user context for the assistant
    - AssistantService: model tier selection and reply generation
    - MessagePipeline: one inbound message end to end

Supporting services:
    - ConversationService, GoalService, AccountService, ResourceService
    - CacheService: optional Redis cache
    - AnthropicCompletionClient, JWTIdentityVerifier: external providers
"""
